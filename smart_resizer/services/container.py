"""Wiring of catalog, pricing, store, queue and services.

Everything is built once at startup and handed to the app explicitly. The
catalog and pricing tables are immutable after this point.
"""

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from smart_resizer.auth.supabase_auth import SupabaseIdentityProvider
from smart_resizer.config import Settings
from smart_resizer.db.repository import (
    InMemoryJobRepository,
    JobRepository,
    SupabaseJobRepository,
)
from smart_resizer.db.supabase_client import make_admin_client_factory
from smart_resizer.formats.catalog import FormatCatalog, build_default_catalog
from smart_resizer.jobs.dispatcher import JobDispatcher
from smart_resizer.jobs.in_process_queue import InProcessQueue
from smart_resizer.pricing.workflows import PricingCatalog, load_pricing_catalog
from smart_resizer.services.admission import JobAdmission
from smart_resizer.services.retry import RetryController
from smart_resizer.services.worker import ResizeWorker
from smart_resizer.storage.object_store import (
    LocalObjectStore,
    ObjectStore,
    SupabaseObjectStore,
)


@dataclass
class ServiceContainer:
    settings: Settings
    catalog: FormatCatalog
    pricing: PricingCatalog
    repository: JobRepository
    storage: ObjectStore
    dispatcher: JobDispatcher
    worker: ResizeWorker
    admission: JobAdmission
    retry: RetryController
    identity: Optional[SupabaseIdentityProvider] = None


def assemble(
    settings: Settings,
    catalog: FormatCatalog,
    pricing: PricingCatalog,
    repository: JobRepository,
    storage: ObjectStore,
    dispatcher: Optional[JobDispatcher] = None,
    identity: Optional[SupabaseIdentityProvider] = None,
) -> ServiceContainer:
    """Build the services around the given collaborators.

    Without a dispatcher an InProcessQueue is created that feeds the worker.
    """
    worker = ResizeWorker(
        catalog,
        repository,
        storage,
        format_concurrency=settings.format_concurrency,
        format_timeout_seconds=settings.format_timeout_seconds,
    )
    if dispatcher is None:
        dispatcher = InProcessQueue(worker_fn=worker.process, workers=settings.queue_workers)

    admission = JobAdmission(
        catalog,
        repository,
        storage,
        dispatcher,
        pricing.smart_resizer,
        allowed_formats=settings.allowed_image_formats,
        max_dimension=settings.max_image_dimension,
        max_bytes=settings.max_upload_bytes,
    )
    return ServiceContainer(
        settings=settings,
        catalog=catalog,
        pricing=pricing,
        repository=repository,
        storage=storage,
        dispatcher=dispatcher,
        worker=worker,
        admission=admission,
        retry=RetryController(repository, dispatcher),
        identity=identity,
    )


def build_container(settings: Settings) -> ServiceContainer:
    """Production wiring from settings."""
    catalog = build_default_catalog()
    pricing = load_pricing_catalog(settings.pricing_config_path)

    supabase_configured = bool(settings.supabase_url and settings.supabase_service_role_key)
    admin_factory = make_admin_client_factory(settings) if supabase_configured else None

    if admin_factory is not None:
        repository: JobRepository = SupabaseJobRepository(
            admin_factory, settings.jobs_table, settings.results_table
        )
    else:
        logger.warning("Supabase is not configured; jobs are kept in memory")
        repository = InMemoryJobRepository()

    if settings.storage_backend == "supabase" and admin_factory is not None:
        storage: ObjectStore = SupabaseObjectStore(admin_factory, settings.storage_bucket)
    else:
        storage = LocalObjectStore(settings.local_storage_dir, settings.public_base_url)

    identity = None
    if admin_factory is not None and settings.supabase_anon_key:
        identity = SupabaseIdentityProvider(settings, admin_factory)

    logger.info(
        "Catalog: {} formats; storage: {}; repository: {}",
        len(catalog), type(storage).__name__, type(repository).__name__,
    )
    return assemble(settings, catalog, pricing, repository, storage, identity=identity)
