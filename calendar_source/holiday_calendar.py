"""Holiday calendar source backed by local files and the Nager.Date API."""
import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import requests

from descriptions.errors import CalendarUnavailableError
from descriptions.models import Holiday

logger = logging.getLogger(__name__)


class HolidayCalendar:
    """
    Read-only holiday calendar per (country, year).

    Calendars are read from "{data_dir}/{cc}-{year}.json". Missing files
    are fetched from Nager.Date and written back to the data directory.
    """

    BASE_URL = "https://date.nager.at/api/v3"

    def __init__(
        self,
        data_dir: Union[str, Path] = 'data/holidays',
        base_url: str = BASE_URL,
        timeout: int = 10,
        fetch_remote: bool = True
    ):
        """
        Initialize the calendar source.

        Args:
            data_dir: Directory holding "{cc}-{year}.json" files
            base_url: Nager.Date API base URL
            timeout: HTTP request timeout in seconds (default: 10)
            fetch_remote: Fetch from the API when no local file exists
        """
        self.data_dir = Path(data_dir)
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.fetch_remote = fetch_remote
        self._calendars: Dict[Tuple[str, int], Tuple[Optional[str], List[Holiday]]] = {}

    def get_holidays(self, country_code: str, year: int) -> List[Holiday]:
        """
        Return the holidays of a country and year in calendar order.

        Raises:
            CalendarUnavailableError: If neither the file nor the API has data
        """
        return self._get(country_code, year)[1]

    def get_country_name(self, country_code: str, year: int) -> Optional[str]:
        """Country name recorded in the calendar file, if any."""
        return self._get(country_code, year)[0]

    def _get(self, country_code: str, year: int) -> Tuple[Optional[str], List[Holiday]]:
        cc = country_code.strip().lower()
        year = int(year)
        cache_key = (cc, year)

        if cache_key not in self._calendars:
            self._calendars[cache_key] = self._load(cc, year)

        return self._calendars[cache_key]

    def _load(self, cc: str, year: int) -> Tuple[Optional[str], List[Holiday]]:
        path = self._file_path(cc, year)

        if path.exists():
            try:
                with path.open('r', encoding='utf-8') as f:
                    payload = json.load(f)
                country_name, holidays = self._parse_document(payload, cc, year)
                logger.info(f"Loaded {len(holidays)} holidays from {path}")
                return country_name, holidays
            except (OSError, ValueError, CalendarUnavailableError) as e:
                logger.warning(f"Failed to read calendar file {path}: {e}")

        if not self.fetch_remote:
            raise CalendarUnavailableError(
                f"No calendar data for {cc.upper()} {year}"
            )

        try:
            payload = self._fetch_calendar_json(cc, year)
        except requests.RequestException as e:
            raise CalendarUnavailableError(
                f"Failed to fetch calendar for {cc.upper()} {year}: {e}"
            ) from e

        country_name, holidays = self._parse_document(payload, cc, year)
        self._save_file(path, cc, year, holidays)
        return country_name, holidays

    def _fetch_calendar_json(self, cc: str, year: int) -> Any:
        """
        Fetch public holidays from Nager.Date with retry logic.

        Raises:
            requests.RequestException: If all retry attempts fail
        """
        url = f"{self.base_url}/PublicHolidays/{year}/{cc.upper()}"

        max_retries = 3
        base_delay = 1  # seconds

        for attempt in range(max_retries):
            try:
                logger.info(
                    f"Fetching calendar {cc.upper()} {year} "
                    f"(attempt {attempt + 1}/{max_retries})"
                )
                response = requests.get(url, timeout=self.timeout)
                response.raise_for_status()
                return response.json()

            except requests.RequestException as e:
                if attempt < max_retries - 1:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {max_retries} retry attempts failed. Last error: {e}"
                    )
                    raise

    def _parse_document(
        self,
        payload: Any,
        cc: str,
        year: int
    ) -> Tuple[Optional[str], List[Holiday]]:
        """Accept a bare holiday list or {"country": ..., "holidays": [...]}."""
        country_name = None
        if isinstance(payload, dict):
            country_name = payload.get('country') or None
            payload = payload.get('holidays', [])

        if not isinstance(payload, list):
            raise CalendarUnavailableError(
                f"Calendar data for {cc.upper()} {year} is not a list"
            )

        holidays = []
        for entry in payload:
            holiday = self._parse_holiday(entry, cc, year)
            if holiday:
                holidays.append(holiday)

        return country_name, holidays

    def _parse_holiday(self, entry: Any, cc: str, year: int) -> Optional[Holiday]:
        """
        Parse a holiday in either stored or Nager.Date shape.

        Returns:
            Holiday object or None if the entry lacks a name or date
        """
        if not isinstance(entry, dict):
            return None

        name = entry.get('name') or entry.get('localName')
        date = entry.get('date')
        if not name or not date:
            logger.warning(f"Skipping calendar entry without name/date: {entry}")
            return None

        is_global = bool(entry.get('global', True))
        holiday_type = entry.get('type') or self._map_holiday_type(entry.get('types'))

        return Holiday(
            id=entry.get('id') or self.holiday_id(cc, year, date, name),
            name=name,
            date=date,
            type=holiday_type,
            is_global=is_global,
            counties=entry.get('counties') or None
        )

    @staticmethod
    def holiday_id(cc: str, year: int, date: str, name: str) -> str:
        name_part = re.sub(r'\s+', '_', name)
        return f"{cc.lower()}_{year}_{date}_{name_part}"

    @staticmethod
    def _map_holiday_type(types: Optional[List[str]]) -> str:
        if not types:
            return 'optional'

        joined = ' '.join(types).lower()
        if 'public' in joined or 'national' in joined:
            return 'public'
        if 'bank' in joined:
            return 'bank'
        if 'school' in joined:
            return 'school'
        return 'optional'

    def _file_path(self, cc: str, year: int) -> Path:
        return self.data_dir / f"{cc}-{year}.json"

    def _save_file(self, path: Path, cc: str, year: int, holidays: List[Holiday]) -> None:
        """Write a fetched calendar back to the data directory."""
        document = {
            'countryCode': cc.upper(),
            'year': year,
            'holidays': [
                {
                    'id': h.id,
                    'name': h.name,
                    'date': h.date,
                    'type': h.type,
                    'global': h.is_global,
                    'counties': h.counties
                }
                for h in holidays
            ]
        }

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open('w', encoding='utf-8') as f:
                json.dump(document, f, ensure_ascii=False, indent=2)
            logger.info(f"Saved calendar file {path}")
        except OSError as e:
            logger.warning(f"Failed to save calendar file {path}: {e}")
