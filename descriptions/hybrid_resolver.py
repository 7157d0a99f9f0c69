"""Tiered description resolver: remote store first, local snapshot fallback."""
import dataclasses
import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from bs4 import BeautifulSoup

from descriptions.errors import RemoteUnavailableError, ValidationError
from descriptions.models import (
    SUPPORTED_LOCALES,
    CacheStatistics,
    CanonicalKey,
    DescriptionRecord,
    HolidayIdentity,
)
from descriptions.singleflight import SingleFlight
from identity.key_variants import KeyVariantGenerator
from storage.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


class HybridResolver:
    """
    Resolves holiday descriptions across the remote and local tiers.

    A lookup makes one remote attempt. A remote hit is returned directly.
    A remote miss or error falls through to the local snapshot, which is
    probed by canonical identity and then with every legacy key variant.
    Remote errors are counted, never raised to the caller.

    With legacy_lookup disabled only canonical keys are used: the remote
    tier is read under the canonical storage key alone and legacy string
    variants are not probed.
    """

    def __init__(
        self,
        remote_store,
        snapshot_store: SnapshotStore,
        key_generator: Optional[KeyVariantGenerator] = None,
        legacy_lookup: bool = True,
        max_workers: int = 8
    ):
        """
        Initialize the resolver.

        Args:
            remote_store: Authoritative store (DynamoDBDescriptionStore or
                compatible); None disables the remote tier
            snapshot_store: Local fallback tier
            key_generator: Key variant generator shared with the scanner
            legacy_lookup: Probe legacy key variants after the canonical key
            max_workers: Thread pool size for resolve_many
        """
        self.remote_store = remote_store
        self.snapshot_store = snapshot_store
        self.key_generator = key_generator or KeyVariantGenerator()
        self.legacy_lookup = legacy_lookup
        self.max_workers = max_workers

        self._stats = CacheStatistics()
        self._stats_lock = threading.Lock()
        self._in_flight = SingleFlight()

    def resolve(
        self,
        holiday_name: str,
        country_identifier: str,
        locale: str
    ) -> Optional[DescriptionRecord]:
        """
        Find the description for a holiday.

        Args:
            holiday_name: Holiday name as given by the calendar
            country_identifier: Country code or name
            locale: Description locale

        Returns:
            DescriptionRecord, or None when no tier has one
        """
        identity = HolidayIdentity(holiday_name, country_identifier, locale)
        canonical = self.key_generator.canonical_key(identity)
        legacy_keys = self._legacy_keys(identity)

        if self.remote_store is not None:
            try:
                record = self._in_flight.do(
                    (canonical, tuple(legacy_keys)),
                    lambda: self._fetch_remote(canonical, legacy_keys)
                )
            except RemoteUnavailableError as e:
                logger.warning(
                    f"Remote tier unavailable for {canonical.serialize()!r}, "
                    f"falling back to snapshot: {e}"
                )
                self._record(errors=1, remote_available=False)
            else:
                self._record(remote_available=True)
                if record is not None:
                    logger.debug(f"Remote hit for {canonical.serialize()!r}")
                    self._record(remote_hits=1)
                    return record

        record = self._fetch_local(canonical, legacy_keys)
        if record is not None:
            logger.debug(f"Snapshot hit for {canonical.serialize()!r}")
            self._record(local_hits=1)
            return record

        logger.debug(f"No description for {canonical.serialize()!r}")
        self._record(misses=1)
        return None

    def resolve_many(
        self,
        requests: Iterable[Tuple[str, str, str]]
    ) -> List[Optional[DescriptionRecord]]:
        """
        Resolve several (holiday_name, country, locale) triples concurrently.

        Returns:
            Results in request order
        """
        requests = list(requests)
        if not requests:
            return []

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(lambda r: self.resolve(*r), requests))

    def save(
        self,
        holiday_name: str,
        country_name: str,
        locale: str,
        description: str,
        is_manual: bool = True,
        confidence: Optional[float] = None,
        holiday_id: Optional[str] = None,
        modified_by: Optional[str] = None,
        ai_model: Optional[str] = None,
        year: Optional[int] = None
    ) -> DescriptionRecord:
        """
        Validate and write a description to the remote store.

        The local snapshot is not updated; it is refreshed out-of-band by
        the snapshot export. Without an explicit holiday_id the record gets
        "{cc}_{year}_{Holiday_Name}", year defaulting to the current one, so
        year-filtered listings can find it.

        Returns:
            The stored record

        Raises:
            ValidationError: If required fields are missing or invalid
            RemoteUnavailableError: If the remote write fails
        """
        missing = [
            name for name, value in (
                ('holiday_name', holiday_name),
                ('country_name', country_name),
                ('locale', locale)
            )
            if not isinstance(value, str) or not value.strip()
        ]
        if not isinstance(description, str) or not self._visible_text(description):
            missing.append('description')
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}", fields=missing
            )

        locale = locale.strip()
        if locale not in SUPPORTED_LOCALES:
            raise ValidationError(f"Unsupported locale: {locale!r}", fields=['locale'])

        if not isinstance(is_manual, bool):
            raise ValidationError(
                f"isManual must be a boolean: {is_manual!r}", fields=['is_manual']
            )

        if year is not None:
            try:
                year = int(year)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid year: {year!r}", fields=['year'])

        if is_manual:
            if confidence is not None and confidence != 1.0:
                logger.info(
                    f"Forcing confidence 1.0 for manual description "
                    f"(was {confidence})"
                )
            confidence = 1.0
        else:
            confidence = 0.0 if confidence is None else confidence
            try:
                confidence = float(confidence)
            except (TypeError, ValueError):
                raise ValidationError(
                    f"Invalid confidence: {confidence!r}", fields=['confidence']
                )
            if not 0.0 <= confidence <= 1.0:
                raise ValidationError(
                    f"Confidence must be within [0, 1]: {confidence}",
                    fields=['confidence']
                )

        holiday_name = holiday_name.strip()
        country = self.key_generator.normalizer.try_normalize(country_name)
        if country:
            country_name = country.name
            country_code = country.code
        else:
            logger.warning(f"Saving description with unknown country {country_name!r}")
            country_name = country_name.strip()
            country_code = country_name

        timestamp = datetime.now(timezone.utc)
        if not holiday_id:
            name_part = re.sub(r'\s+', '_', holiday_name)
            holiday_id = f"{country_code.lower()}_{year or timestamp.year}_{name_part}"

        now = timestamp.isoformat()
        record = DescriptionRecord(
            holiday_id=holiday_id,
            holiday_name=holiday_name,
            country_name=country_name,
            locale=locale,
            description=description.strip(),
            confidence=confidence,
            is_manual=is_manual,
            generated_at=now,
            last_used=now,
            modified_at=now,
            modified_by=modified_by or ('admin_manual' if is_manual else 'system'),
            ai_model=None if is_manual else ai_model
        )

        if self.remote_store is None:
            raise RemoteUnavailableError("No remote store configured")

        try:
            stored = self.remote_store.upsert(record)
        except RemoteUnavailableError:
            self._record(errors=1, remote_available=False)
            raise

        self._record(remote_available=True)
        logger.info(
            f"Saved {'manual' if is_manual else 'generated'} description for "
            f"{holiday_name} ({country_name}, {locale})"
        )
        return stored

    def coverage_keys(
        self,
        country_code: str,
        locales: Sequence[str],
        curated_only: bool = True
    ) -> Set[str]:
        """
        Collect every key under which a country's descriptions are reachable.

        Each record contributes its stored key, its canonical key and all of
        its legacy key variants, so callers can probe with the same key
        space resolve() uses.

        Args:
            country_code: Country to collect descriptions for
            locales: Locales of interest
            curated_only: Ignore records that are neither manual nor 1.0

        Returns:
            Set of serialized keys
        """
        records = []

        if self.remote_store is not None:
            try:
                records.extend(self.remote_store.fetch_all(country=country_code))
            except RemoteUnavailableError as e:
                logger.warning(f"Remote tier unavailable during coverage scan: {e}")
                self._record(errors=1, remote_available=False)
            else:
                self._record(remote_available=True)

        normalizer = self.key_generator.normalizer
        records.extend(
            r for r in self.snapshot_store.records()
            if normalizer.same_country(r.country_name, country_code)
        )

        keys = set()
        for record in records:
            if record.locale not in locales:
                continue
            if curated_only and not record.is_curated:
                continue

            identity = record.identity()
            keys.add(self.key_generator.storage_key(identity))
            keys.update(self.key_generator.variants_for(identity))
            if record.source_key:
                keys.add(record.source_key)

        return keys

    def check_remote(self) -> bool:
        """Probe remote liveness and record it in the statistics."""
        available = False
        if self.remote_store is not None:
            available = self.remote_store.check_connection()

        with self._stats_lock:
            self._stats.remote_available = available
            self._stats.last_remote_check = datetime.now(timezone.utc).isoformat()
        return available

    def stats(self) -> CacheStatistics:
        with self._stats_lock:
            return dataclasses.replace(self._stats)

    def reset_stats(self) -> None:
        """Zero the counters, keeping remote liveness information."""
        with self._stats_lock:
            self._stats = CacheStatistics(
                remote_available=self._stats.remote_available,
                last_remote_check=self._stats.last_remote_check
            )

    def _legacy_keys(self, identity: HolidayIdentity) -> List[str]:
        if not self.legacy_lookup:
            return []
        return self.key_generator.ordered_variants(identity)

    def _fetch_remote(
        self,
        canonical: CanonicalKey,
        legacy_keys: List[str]
    ) -> Optional[DescriptionRecord]:
        return self.remote_store.fetch_one([canonical.serialize()] + legacy_keys)

    def _fetch_local(
        self,
        canonical: CanonicalKey,
        legacy_keys: List[str]
    ) -> Optional[DescriptionRecord]:
        record = self.snapshot_store.get_canonical(canonical)
        if record is not None:
            return record

        for key in legacy_keys:
            record = self.snapshot_store.get(key)
            if record is not None:
                return record

        return None

    def _record(self, remote_available: Optional[bool] = None, **increments) -> None:
        with self._stats_lock:
            for name, amount in increments.items():
                setattr(self._stats, name, getattr(self._stats, name) + amount)
            if remote_available is not None:
                self._stats.remote_available = remote_available

    @staticmethod
    def _visible_text(description: str) -> str:
        """Text content of a possibly HTML-formatted description."""
        return BeautifulSoup(description, 'html.parser').get_text(strip=True)
