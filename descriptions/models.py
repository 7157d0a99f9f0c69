"""Data models for description resolution and scanning."""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

SUPPORTED_LOCALES = ('ko', 'en')


@dataclass(frozen=True)
class HolidayIdentity:
    """Logical key for a description, as supplied by a caller."""
    holiday_name: str
    country_identifier: str
    locale: str


@dataclass(frozen=True)
class CanonicalKey:
    """Normalized identity used for equality and deduplication."""
    holiday_name_lower: str
    country_code: str
    locale: str

    def serialize(self) -> str:
        return f"{self.holiday_name_lower}|{self.country_code}|{self.locale}"


@dataclass
class NormalizedCountry:
    """Result of resolving a country identifier."""
    code: str
    name: str


@dataclass
class DescriptionRecord:
    """Stored holiday description."""
    holiday_id: str
    holiday_name: str
    country_name: str
    locale: str
    description: str
    confidence: float = 0.0
    is_manual: bool = False
    generated_at: Optional[str] = None
    last_used: Optional[str] = None
    modified_at: Optional[str] = None
    modified_by: Optional[str] = None
    ai_model: Optional[str] = None
    # Key the record was read from; not part of the record's content.
    source_key: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        self.confidence = float(self.confidence)
        # Manual entries are fully trusted.
        if self.is_manual:
            self.confidence = 1.0

    @property
    def is_curated(self) -> bool:
        return self.is_manual or self.confidence == 1.0

    def identity(self) -> HolidayIdentity:
        return HolidayIdentity(
            holiday_name=self.holiday_name,
            country_identifier=self.country_name,
            locale=self.locale
        )


@dataclass
class Holiday:
    """Calendar entry for a single holiday."""
    id: str
    name: str
    date: str
    type: str
    is_global: bool
    counties: Optional[List[str]] = None


@dataclass
class MissingEntry:
    """Holiday lacking a description in at least one required locale."""
    holiday_id: str
    holiday_name: str
    country_name: str
    country_code: str
    date: str
    year: int
    holiday_type: str
    is_global: bool
    language_status: Dict[str, bool]
    missing_locales: List[str]
    counties: Optional[List[str]] = None


@dataclass
class ScanResult:
    """One page of a missing-description scan."""
    entries: List[MissingEntry]
    total: int
    total_pages: int
    page: int
    limit: int


@dataclass
class CacheStatistics:
    """Counters kept by a resolver for the lifetime of the process."""
    remote_hits: int = 0
    local_hits: int = 0
    misses: int = 0
    errors: int = 0
    remote_available: bool = False
    last_remote_check: Optional[str] = None


@dataclass
class MigrationResult:
    """Result of re-keying legacy remote records."""
    migrated: int
    deleted: int
    conflicts: int
    errors: List[str]
