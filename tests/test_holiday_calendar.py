"""Unit tests for HolidayCalendar."""
import json

import pytest
import responses
from requests.exceptions import ConnectionError

from calendar_source.holiday_calendar import HolidayCalendar
from descriptions.errors import CalendarUnavailableError

NAGER_URL = "https://date.nager.at/api/v3/PublicHolidays/2024/AD"

NAGER_PAYLOAD = [
    {
        "date": "2024-01-01",
        "localName": "Any nou",
        "name": "New Year's Day",
        "countryCode": "AD",
        "global": True,
        "counties": None,
        "types": ["Public"]
    },
    {
        "date": "2024-02-13",
        "localName": "Carnaval",
        "name": "Carnival",
        "countryCode": "AD",
        "global": True,
        "counties": None,
        "types": ["Bank"]
    }
]


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    """Skip retry backoff delays."""
    monkeypatch.setattr('calendar_source.holiday_calendar.time.sleep', lambda seconds: None)


class TestHolidayCalendar:
    """Test cases for HolidayCalendar class."""

    @responses.activate
    def test_fetch_from_api(self, tmp_path):
        """Missing calendars are fetched and parsed in order."""
        responses.add(responses.GET, NAGER_URL, json=NAGER_PAYLOAD, status=200)

        calendar = HolidayCalendar(data_dir=tmp_path)
        holidays = calendar.get_holidays('AD', 2024)

        assert [h.name for h in holidays] == ["New Year's Day", 'Carnival']
        assert holidays[0].type == 'public'
        assert holidays[1].type == 'bank'
        assert holidays[1].id == 'ad_2024_2024-02-13_Carnival'
        assert holidays[1].is_global is True

    @responses.activate
    def test_fetched_calendar_is_saved(self, tmp_path):
        """Fetched calendars are written back and reused."""
        responses.add(responses.GET, NAGER_URL, json=NAGER_PAYLOAD, status=200)

        HolidayCalendar(data_dir=tmp_path).get_holidays('ad', 2024)

        saved = json.loads((tmp_path / 'ad-2024.json').read_text(encoding='utf-8'))
        assert saved['countryCode'] == 'AD'
        assert [h['name'] for h in saved['holidays']] == ["New Year's Day", 'Carnival']

        offline = HolidayCalendar(data_dir=tmp_path, fetch_remote=False)
        assert len(offline.get_holidays('AD', 2024)) == 2
        assert len(responses.calls) == 1

    @responses.activate
    def test_results_cached_in_memory(self, tmp_path):
        responses.add(responses.GET, NAGER_URL, json=NAGER_PAYLOAD, status=200)
        calendar = HolidayCalendar(data_dir=tmp_path)

        calendar.get_holidays('AD', 2024)
        calendar.get_holidays('AD', 2024)

        assert len(responses.calls) == 1

    @responses.activate
    def test_fetch_with_retry_success(self, tmp_path):
        """Retry logic succeeds after initial failures."""
        responses.add(responses.GET, NAGER_URL, status=500)
        responses.add(responses.GET, NAGER_URL, body=ConnectionError("Connection failed"))
        responses.add(responses.GET, NAGER_URL, json=NAGER_PAYLOAD, status=200)

        holidays = HolidayCalendar(data_dir=tmp_path).get_holidays('AD', 2024)

        assert len(holidays) == 2
        assert len(responses.calls) == 3

    @responses.activate
    def test_fetch_all_retries_fail(self, tmp_path):
        """All retry attempts failing raises CalendarUnavailableError."""
        for _ in range(3):
            responses.add(responses.GET, NAGER_URL, status=503)

        with pytest.raises(CalendarUnavailableError):
            HolidayCalendar(data_dir=tmp_path).get_holidays('AD', 2024)

        assert len(responses.calls) == 3
        assert not (tmp_path / 'ad-2024.json').exists()

    def test_offline_without_file(self, tmp_path):
        calendar = HolidayCalendar(data_dir=tmp_path, fetch_remote=False)

        with pytest.raises(CalendarUnavailableError):
            calendar.get_holidays('AD', 2024)

    def test_load_stored_document(self, tmp_path):
        """Stored calendars keep their ids, types and country name."""
        (tmp_path / 'ba-2024.json').write_text(json.dumps({
            'country': 'Bosnia and Herzegovina',
            'holidays': [
                {'id': 'ba-epiphany', 'name': 'Epiphany', 'date': '2024-01-06',
                 'type': 'optional', 'global': False, 'counties': ['BA-SRP']},
                {'name': 'Nameless date only'},
                {'date': '2024-05-01', 'localName': 'Praznik rada'}
            ]
        }), encoding='utf-8')

        calendar = HolidayCalendar(data_dir=tmp_path, fetch_remote=False)
        holidays = calendar.get_holidays('BA', 2024)

        assert calendar.get_country_name('BA', 2024) == 'Bosnia and Herzegovina'
        assert [h.name for h in holidays] == ['Epiphany', 'Praznik rada']
        assert holidays[0].id == 'ba-epiphany'
        assert holidays[0].is_global is False
        assert holidays[0].counties == ['BA-SRP']
        assert holidays[1].type == 'optional'

    def test_load_bare_list(self, tmp_path):
        (tmp_path / 'ad-2024.json').write_text(json.dumps(NAGER_PAYLOAD), encoding='utf-8')

        calendar = HolidayCalendar(data_dir=tmp_path, fetch_remote=False)

        assert len(calendar.get_holidays('AD', 2024)) == 2
        assert calendar.get_country_name('AD', 2024) is None

    @responses.activate
    def test_corrupt_file_falls_back_to_api(self, tmp_path):
        (tmp_path / 'ad-2024.json').write_text('{not json', encoding='utf-8')
        responses.add(responses.GET, NAGER_URL, json=NAGER_PAYLOAD, status=200)

        holidays = HolidayCalendar(data_dir=tmp_path).get_holidays('AD', 2024)

        assert len(holidays) == 2

    @pytest.mark.parametrize('types, expected', [
        (['Public'], 'public'),
        (['Bank', 'Public'], 'public'),
        (['Bank'], 'bank'),
        (['School'], 'school'),
        (['Observance'], 'optional'),
        (None, 'optional'),
    ])
    def test_map_holiday_type(self, types, expected):
        assert HolidayCalendar._map_holiday_type(types) == expected

    def test_holiday_id(self):
        assert HolidayCalendar.holiday_id('BA', 2024, '2024-03-29', 'Good Friday') == (
            'ba_2024_2024-03-29_Good_Friday'
        )
