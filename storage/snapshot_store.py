"""File-backed local snapshot of curated holiday descriptions."""
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from descriptions.errors import SnapshotLoadError
from descriptions.models import SUPPORTED_LOCALES, CanonicalKey, DescriptionRecord
from identity.key_variants import DELIMITERS
from identity.normalizer import IdentityNormalizer

logger = logging.getLogger(__name__)


def record_from_snapshot(key: str, value: Any) -> Optional[DescriptionRecord]:
    """
    Convert one snapshot entry to a DescriptionRecord.

    Missing optional fields are defaulted. When the identity fields are
    absent they are recovered from the entry key.

    Args:
        key: Key the entry is stored under
        value: Entry object from the snapshot document

    Returns:
        DescriptionRecord or None if the entry has no usable description
    """
    if not isinstance(value, dict):
        return None

    description = value.get('description')
    if not isinstance(description, str) or not description.strip():
        return None

    holiday_name = value.get('holidayName')
    country_name = value.get('countryName')
    locale = value.get('locale')
    if not (holiday_name and country_name and locale):
        parsed = _split_key(key)
        if parsed is None:
            return None
        holiday_name = holiday_name or parsed[0]
        country_name = country_name or parsed[1]
        locale = locale or parsed[2]

    try:
        confidence = float(value.get('confidence', 0.0) or 0.0)
    except (TypeError, ValueError):
        confidence = 0.0

    return DescriptionRecord(
        holiday_id=value.get('holidayId') or '',
        holiday_name=holiday_name,
        country_name=country_name,
        locale=locale,
        description=description,
        confidence=confidence,
        is_manual=value.get('isManual') is True,
        generated_at=value.get('generatedAt'),
        last_used=value.get('lastUsed'),
        modified_at=value.get('modifiedAt'),
        modified_by=value.get('modifiedBy'),
        source_key=key
    )


def record_to_snapshot(record: DescriptionRecord) -> Dict[str, Any]:
    """Convert a DescriptionRecord to its camelCase snapshot entry."""
    entry = {
        'holidayId': record.holiday_id,
        'holidayName': record.holiday_name,
        'countryName': record.country_name,
        'locale': record.locale,
        'description': record.description,
        'confidence': record.confidence,
        'generatedAt': record.generated_at,
        'lastUsed': record.last_used,
        'isManual': record.is_manual
    }

    if record.modified_at:
        entry['modifiedAt'] = record.modified_at
    if record.modified_by:
        entry['modifiedBy'] = record.modified_by

    return entry


def _split_key(key: str) -> Optional[Tuple[str, str, str]]:
    """Recover (holiday, country, locale) from a legacy key."""
    for delimiter in DELIMITERS:
        parts = key.rsplit(delimiter, 2)
        if len(parts) == 3 and parts[2] in SUPPORTED_LOCALES and all(parts):
            return parts[0], parts[1], parts[2]
    return None


class SnapshotStore:
    """
    Read-only, in-memory view of the snapshot file.

    The file is read once per process (or per explicit refresh). Only
    curated entries, manual or with confidence 1.0, are kept.
    """

    def __init__(
        self,
        path: Union[str, Path],
        normalizer: Optional[IdentityNormalizer] = None
    ):
        """
        Initialize the snapshot store.

        Args:
            path: Path to the snapshot JSON document
            normalizer: Normalizer used to build the canonical index
        """
        self.path = Path(path)
        self.normalizer = normalizer or IdentityNormalizer()
        self._entries: Optional[Dict[str, DescriptionRecord]] = None
        self._canonical_index: Dict[CanonicalKey, DescriptionRecord] = {}
        self._lock = threading.Lock()

    def load(self) -> Dict[str, DescriptionRecord]:
        """
        Load the snapshot into memory if not already loaded.

        Returns:
            Mapping of stored key to DescriptionRecord (empty on failure)
        """
        entries = self._entries
        if entries is not None:
            return entries

        with self._lock:
            if self._entries is None:
                self._entries, self._canonical_index = self._build()
            return self._entries

    def refresh(self) -> Dict[str, DescriptionRecord]:
        """Re-read the snapshot file."""
        with self._lock:
            self._entries, self._canonical_index = self._build()
            return self._entries

    def get(self, key: str) -> Optional[DescriptionRecord]:
        return self.load().get(key)

    def get_canonical(self, canonical_key: CanonicalKey) -> Optional[DescriptionRecord]:
        self.load()
        return self._canonical_index.get(canonical_key)

    def records(self) -> List[DescriptionRecord]:
        return list(self.load().values())

    def _build(self) -> Tuple[Dict[str, DescriptionRecord], Dict[CanonicalKey, DescriptionRecord]]:
        try:
            document = self._read_document()
        except SnapshotLoadError as e:
            logger.warning(f"Using empty snapshot: {e}")
            return {}, {}

        entries = {}
        canonical_index = {}
        skipped = 0

        for key, value in document.items():
            record = record_from_snapshot(key, value)
            if record is None or not record.is_curated:
                skipped += 1
                continue

            entries[key] = record
            canonical_key = self.normalizer.canonical_key(record.identity())
            canonical_index.setdefault(canonical_key, record)

        logger.info(
            f"Loaded {len(entries)} curated snapshot entries from {self.path} "
            f"({skipped} skipped)"
        )
        return entries, canonical_index

    def _read_document(self) -> Dict[str, Any]:
        """
        Read and parse the snapshot file.

        Raises:
            SnapshotLoadError: If the file is missing, corrupt or not an object
        """
        try:
            with self.path.open('r', encoding='utf-8') as f:
                document = json.load(f)
        except FileNotFoundError as e:
            raise SnapshotLoadError(f"Snapshot file not found: {self.path}") from e
        except (OSError, ValueError) as e:
            raise SnapshotLoadError(f"Failed to read snapshot {self.path}: {e}") from e

        if not isinstance(document, dict):
            raise SnapshotLoadError(
                f"Snapshot {self.path} is not a JSON object"
            )

        return document
