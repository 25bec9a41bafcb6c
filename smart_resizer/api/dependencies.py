"""FastAPI dependencies shared by the v1 routes."""

from fastapi import Request

from smart_resizer.services.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    """The service container created during app startup."""
    return request.app.state.container
