"""Format catalog: named output presets with pixel dimensions and platform grouping.

The catalog is built once at startup and is read-only afterwards. Components
receive it explicitly rather than importing a module-level table.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple


class Platform(str, Enum):
    META = "meta"
    GOOGLE = "google"
    DOOH = "dooh"
    PROGRAMMATIC = "programmatic"
    STANDARD = "standard"


@dataclass(frozen=True)
class SafeZone:
    """Margins kept clear of content, as fractions (0-1) of the output size."""
    top: float = 0.0
    bottom: float = 0.0
    left: float = 0.0
    right: float = 0.0

    def __post_init__(self):
        sides = (self.top, self.bottom, self.left, self.right)
        if any(v < 0 for v in sides):
            raise ValueError(f"Safe zone margins must be non-negative, got {sides}")
        if self.top + self.bottom >= 1 or self.left + self.right >= 1:
            raise ValueError(f"Safe zone leaves no room for content: {sides}")

    @property
    def is_empty(self) -> bool:
        return not (self.top or self.bottom or self.left or self.right)


def safe_zone_pixels(width: int, height: int, zone: SafeZone) -> Dict[str, int]:
    """Convert a fractional safe zone into pixel margins for a width x height output."""
    return {
        "top": round(height * zone.top),
        "bottom": round(height * zone.bottom),
        "left": round(width * zone.left),
        "right": round(width * zone.right),
    }


@dataclass(frozen=True)
class FormatSpec:
    """Metadata describing one output format."""
    key: str
    width: int
    height: int
    ratio: str
    platform: Platform
    description: str = ""
    usage: str = ""
    safe_zone: SafeZone = field(default_factory=SafeZone)

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Format '{self.key}' must have positive dimensions, "
                f"got {self.width}x{self.height}"
            )

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    def to_dict(self) -> Dict:
        return {
            "key": self.key,
            "width": self.width,
            "height": self.height,
            "ratio": self.ratio,
            "platform": self.platform.value,
            "description": self.description,
            "usage": self.usage,
            "safe_zone": {
                "top": self.safe_zone.top,
                "bottom": self.safe_zone.bottom,
                "left": self.safe_zone.left,
                "right": self.safe_zone.right,
            },
            "safe_zone_px": safe_zone_pixels(self.width, self.height, self.safe_zone),
        }


DEFAULT_FORMATS: Tuple[FormatSpec, ...] = (
    # Square
    FormatSpec("square", 1080, 1080, "1:1", Platform.STANDARD,
               "1:1 Square", "Instagram, Facebook posts"),
    # Portrait
    FormatSpec("portrait_2_3", 1080, 1620, "2:3", Platform.STANDARD,
               "2:3 Portrait", "Classic portrait photography"),
    FormatSpec("portrait_3_4", 1080, 1440, "3:4", Platform.STANDARD,
               "3:4 Traditional", "Traditional portrait format"),
    FormatSpec("social_story", 1080, 1920, "9:16", Platform.STANDARD,
               "9:16 Social Story", "Instagram Stories, TikTok, Reels"),
    FormatSpec("social_post", 1080, 1350, "4:5", Platform.STANDARD,
               "4:5 Social Post", "Instagram/Facebook optimal"),
    # Landscape
    FormatSpec("standard_3_2", 1620, 1080, "3:2", Platform.STANDARD,
               "3:2 Standard", "Standard photography (35mm)"),
    FormatSpec("classic_4_3", 1440, 1080, "4:3", Platform.STANDARD,
               "4:3 Classic", "Classic TV/monitor format"),
    FormatSpec("widescreen", 1920, 1080, "16:9", Platform.STANDARD,
               "16:9 Widescreen", "YouTube, modern displays"),
    FormatSpec("medium_5_4", 1350, 1080, "5:4", Platform.STANDARD,
               "5:4 Medium", "Large format photography"),
    FormatSpec("ultrawide", 2520, 1080, "21:9", Platform.STANDARD,
               "21:9 Widescreen", "Cinematic ultra-wide"),
)

DEFAULT_PACKS: Dict[str, List[str]] = {
    "social": ["square", "social_post", "social_story"],
    "portrait": ["portrait_2_3", "portrait_3_4", "social_story"],
    "landscape": ["standard_3_2", "classic_4_3", "widescreen"],
}


class FormatCatalog:
    """Read-only registry of FormatSpecs keyed by format key.

    Insertion order is preserved, so listings and per-platform lookups are
    returned in catalog order.
    """

    def __init__(
        self,
        formats: Iterable[FormatSpec],
        packs: Optional[Mapping[str, List[str]]] = None,
    ):
        entries: Dict[str, FormatSpec] = {}
        for spec in formats:
            if spec.key in entries:
                raise ValueError(f"Duplicate format key '{spec.key}'")
            entries[spec.key] = spec
        self._formats: Mapping[str, FormatSpec] = MappingProxyType(entries)

        resolved_packs: Dict[str, Tuple[str, ...]] = {}
        for name, keys in (packs or {}).items():
            unknown = [k for k in keys if k not in entries]
            if unknown:
                raise ValueError(f"Pack '{name}' references unknown formats: {unknown}")
            resolved_packs[name] = tuple(keys)
        resolved_packs["all"] = tuple(entries.keys())
        self._packs: Mapping[str, Tuple[str, ...]] = MappingProxyType(resolved_packs)

    def __len__(self) -> int:
        return len(self._formats)

    def __contains__(self, key: object) -> bool:
        return key in self._formats

    def get_all_format_keys(self) -> Set[str]:
        return set(self._formats.keys())

    def ordered_keys(self) -> List[str]:
        return list(self._formats.keys())

    def get_formats_by_platform(self, platform: Platform) -> List[str]:
        """Format keys on a platform, in catalog order."""
        platform = Platform(platform)
        return [k for k, s in self._formats.items() if s.platform == platform]

    def lookup(self, key: str) -> FormatSpec:
        """Get a format by key. Unknown keys raise KeyError."""
        spec = self._formats.get(key)
        if spec is None:
            raise KeyError(f"Format '{key}' not found in catalog")
        return spec

    def find_invalid(self, keys: Iterable[str]) -> List[str]:
        """Return every key not in the catalog, in request order, without duplicates."""
        invalid: List[str] = []
        for key in keys:
            if key not in self._formats and key not in invalid:
                invalid.append(key)
        return invalid

    def list_formats(self, platform: Optional[Platform] = None) -> List[FormatSpec]:
        keys = self.get_formats_by_platform(platform) if platform else self.ordered_keys()
        return [self._formats[k] for k in keys]

    @property
    def packs(self) -> Mapping[str, Tuple[str, ...]]:
        return self._packs


def build_default_catalog() -> FormatCatalog:
    return FormatCatalog(DEFAULT_FORMATS, DEFAULT_PACKS)
