"""Scanner for holidays lacking descriptions in required locales."""
import logging
import math
from typing import Dict, List, Optional, Sequence, Set

from calendar_source.holiday_calendar import HolidayCalendar
from descriptions.errors import ValidationError
from descriptions.hybrid_resolver import HybridResolver
from descriptions.models import (
    SUPPORTED_LOCALES,
    Holiday,
    HolidayIdentity,
    MissingEntry,
    ScanResult,
)

logger = logging.getLogger(__name__)


class MissingSetScanner:
    """Computes the admin backlog of holidays without full locale coverage."""

    DEFAULT_LIMIT = 50

    def __init__(self, resolver: HybridResolver, calendar: HolidayCalendar):
        """
        Initialize the scanner.

        Args:
            resolver: Resolver whose tiers and key space define coverage
            calendar: Source of holiday calendars
        """
        self.resolver = resolver
        self.calendar = calendar
        self.key_generator = resolver.key_generator

    def scan(
        self,
        country_code: str,
        year: int,
        required_locales: Sequence[str] = SUPPORTED_LOCALES,
        page: int = 1,
        limit: int = DEFAULT_LIMIT
    ) -> ScanResult:
        """
        List holidays missing a description in at least one required locale.

        Entries follow calendar order; pages are slices of the computed set.

        Args:
            country_code: ISO2 country code
            year: Calendar year
            required_locales: Locales every holiday must be described in
            page: 1-based page number
            limit: Page size

        Returns:
            ScanResult with the requested page and totals

        Raises:
            ValidationError: On invalid paging or locale arguments
            CalendarUnavailableError: If the calendar cannot be loaded
        """
        if page < 1 or limit < 1:
            raise ValidationError(
                f"Invalid pagination: page={page}, limit={limit}",
                fields=['page', 'limit']
            )

        locales = list(dict.fromkeys(required_locales))
        if not locales:
            raise ValidationError("No required locales given", fields=['locales'])

        entries = self.find_missing(country_code, int(year), locales)

        total = len(entries)
        start = (page - 1) * limit

        logger.info(
            f"Missing-description scan {country_code.upper()} {year}: "
            f"{total} holidays incomplete for {locales}"
        )
        return ScanResult(
            entries=entries[start:start + limit],
            total=total,
            total_pages=math.ceil(total / limit),
            page=page,
            limit=limit
        )

    def find_missing(
        self,
        country_code: str,
        year: int,
        locales: List[str]
    ) -> List[MissingEntry]:
        """Compute the full, unpaginated missing set."""
        cc = country_code.strip().upper()
        holidays = self.calendar.get_holidays(cc, year)
        existing_keys = self.resolver.coverage_keys(cc, locales)

        country_name = self._country_name(cc, year)

        missing = []
        for holiday in holidays:
            status = self._language_status(holiday, cc, locales, existing_keys)
            if all(status.values()):
                continue

            missing.append(MissingEntry(
                holiday_id=holiday.id,
                holiday_name=holiday.name,
                country_name=country_name,
                country_code=cc,
                date=holiday.date,
                year=year,
                holiday_type=holiday.type,
                is_global=holiday.is_global,
                language_status=status,
                missing_locales=[locale for locale in locales if not status[locale]],
                counties=holiday.counties
            ))

        return missing

    def _language_status(
        self,
        holiday: Holiday,
        country_code: str,
        locales: List[str],
        existing_keys: Set[str]
    ) -> Dict[str, bool]:
        status = {}
        for locale in locales:
            identity = HolidayIdentity(holiday.name, country_code, locale)
            probe_keys = self.key_generator.variants_for(identity)
            probe_keys.add(self.key_generator.storage_key(identity))
            status[locale] = not probe_keys.isdisjoint(existing_keys)
        return status

    def _country_name(self, country_code: str, year: int) -> str:
        name: Optional[str] = self.calendar.get_country_name(country_code, year)
        if name:
            return name

        country = self.key_generator.normalizer.try_normalize(country_code)
        return country.name if country else country_code
