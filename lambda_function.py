"""AWS Lambda handler for the holiday description service."""
import dataclasses
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from calendar_source.holiday_calendar import HolidayCalendar
from descriptions.errors import (
    CalendarUnavailableError,
    RemoteUnavailableError,
    ValidationError,
)
from descriptions.hybrid_resolver import HybridResolver
from descriptions.models import DescriptionRecord
from identity.key_variants import KeyVariantGenerator
from scanner.missing_scanner import MissingSetScanner
from storage.dynamodb_store import DynamoDBDescriptionStore
from storage.snapshot_store import SnapshotStore
from storage.snapshot_sync import export_snapshot

# Attributes every LogRecord has; anything else came in through `extra`.
_RESERVED_LOG_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {
    'message', 'asctime'
}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including `extra` fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_ATTRS and not key.startswith('_'):
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def load_settings() -> Dict[str, Any]:
    """Read configuration from environment variables."""
    return {
        'table_name': os.environ.get('TABLE_NAME', 'holiday-descriptions'),
        'log_level': os.environ.get('LOG_LEVEL', 'INFO'),
        'snapshot_path': os.environ.get('SNAPSHOT_PATH', 'data/description-snapshot.json'),
        'calendar_dir': os.environ.get('CALENDAR_DIR', 'data/holidays'),
        'calendar_api_url': os.environ.get('CALENDAR_API_URL', HolidayCalendar.BASE_URL),
        'timeout_seconds': int(os.environ.get('TIMEOUT_SECONDS', '10')),
        'legacy_key_lookup': os.environ.get('LEGACY_KEY_LOOKUP', 'true').lower()
        in ('1', 'true', 'yes'),
        'required_locales': [
            locale.strip()
            for locale in os.environ.get('REQUIRED_LOCALES', 'ko,en').split(',')
            if locale.strip()
        ]
    }


@dataclass
class Services:
    """Components shared by invocations of a warm container."""
    remote_store: DynamoDBDescriptionStore
    snapshot_store: SnapshotStore
    resolver: HybridResolver
    scanner: MissingSetScanner


_services: Optional[Services] = None


def build_services(settings: Dict[str, Any]) -> Services:
    key_generator = KeyVariantGenerator()
    remote_store = DynamoDBDescriptionStore(
        table_name=settings['table_name'],
        timeout=settings['timeout_seconds'],
        key_generator=key_generator
    )
    snapshot_store = SnapshotStore(
        settings['snapshot_path'], normalizer=key_generator.normalizer
    )
    resolver = HybridResolver(
        remote_store,
        snapshot_store,
        key_generator=key_generator,
        legacy_lookup=settings['legacy_key_lookup']
    )
    calendar = HolidayCalendar(
        data_dir=settings['calendar_dir'],
        base_url=settings['calendar_api_url'],
        timeout=settings['timeout_seconds']
    )
    return Services(
        remote_store=remote_store,
        snapshot_store=snapshot_store,
        resolver=resolver,
        scanner=MissingSetScanner(resolver, calendar)
    )


def get_services(settings: Dict[str, Any]) -> Services:
    """Build components once per container so statistics persist."""
    global _services
    if _services is None:
        _services = build_services(settings)
    return _services


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json'},
        'body': json.dumps(body, ensure_ascii=False, default=str)
    }


def _error_response(status_code: int, message: str, error: Exception, **extra) -> Dict[str, Any]:
    body = {
        'message': message,
        'error': str(error),
        'error_type': type(error).__name__
    }
    body.update(extra)
    return _response(status_code, body)


def _record_body(record: DescriptionRecord) -> Dict[str, Any]:
    body = dataclasses.asdict(record)
    body.pop('source_key', None)
    return body


def _query_params(event: Dict[str, Any]) -> Dict[str, str]:
    return event.get('queryStringParameters') or {}


def _int_param(params: Dict[str, str], name: str, default: Optional[int] = None) -> Optional[int]:
    value = params.get(name)
    if value in (None, ''):
        return default
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"Query parameter {name!r} must be an integer", fields=[name])


def _require_params(params: Dict[str, str], *names: str) -> None:
    missing = [name for name in names if not params.get(name)]
    if missing:
        raise ValidationError(
            f"Missing query parameters: {', '.join(missing)}", fields=missing
        )


def handle_resolve(event, services: Services, settings) -> Dict[str, Any]:
    params = _query_params(event)
    _require_params(params, 'holiday', 'country')

    record = services.resolver.resolve(
        params['holiday'], params['country'], params.get('locale', 'ko')
    )
    if record is None:
        # Absence is expected; pages render a "description pending" state.
        return _response(200, {'status': 'pending', 'description': None})

    return _response(200, {'status': 'found', 'description': _record_body(record)})


def handle_save(event, services: Services, settings) -> Dict[str, Any]:
    try:
        body = json.loads(event.get('body') or '{}')
    except ValueError as e:
        raise ValidationError(f"Request body is not valid JSON: {e}")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    authorizer = event.get('requestContext', {}).get('authorizer') or {}
    record = services.resolver.save(
        holiday_name=body.get('holidayName'),
        country_name=body.get('countryName'),
        locale=body.get('locale'),
        description=body.get('description'),
        is_manual=body.get('isManual', True),
        confidence=body.get('confidence'),
        holiday_id=body.get('holidayId'),
        year=body.get('year'),
        modified_by=body.get('modifiedBy') or authorizer.get('principalId'),
        ai_model=body.get('aiModel')
    )
    return _response(200, {'message': 'Description saved', 'description': _record_body(record)})


def handle_missing(event, services: Services, settings) -> Dict[str, Any]:
    params = _query_params(event)
    _require_params(params, 'country', 'year')

    locales = params.get('locales')
    required_locales = (
        [locale.strip() for locale in locales.split(',') if locale.strip()]
        if locales else settings['required_locales']
    )

    result = services.scanner.scan(
        params['country'],
        _int_param(params, 'year'),
        required_locales,
        page=_int_param(params, 'page', 1),
        limit=_int_param(params, 'limit', MissingSetScanner.DEFAULT_LIMIT)
    )
    return _response(200, {
        'entries': [dataclasses.asdict(entry) for entry in result.entries],
        'total': result.total,
        'totalPages': result.total_pages,
        'page': result.page,
        'limit': result.limit
    })


def handle_list(event, services: Services, settings) -> Dict[str, Any]:
    params = _query_params(event)
    is_manual = params.get('isManual')
    page = _int_param(params, 'page', 1)
    limit = _int_param(params, 'limit', 20)
    if page < 1 or limit < 1:
        raise ValidationError(
            f"Invalid pagination: page={page}, limit={limit}", fields=['page', 'limit']
        )

    records, total = services.remote_store.fetch_many(
        country=params.get('country'),
        year=_int_param(params, 'year'),
        is_manual=None if is_manual is None else is_manual.lower() == 'true',
        locale=params.get('locale'),
        page=page,
        limit=limit
    )
    return _response(200, {
        'data': [_record_body(record) for record in records],
        'total': total,
        'page': page,
        'limit': limit,
        'totalPages': -(-total // limit)
    })


def handle_dashboard(event, services: Services, settings) -> Dict[str, Any]:
    stats = services.remote_store.get_dashboard_stats()
    stats['cache'] = dataclasses.asdict(services.resolver.stats())
    return _response(200, stats)


def handle_stats(event, services: Services, settings) -> Dict[str, Any]:
    return _response(200, dataclasses.asdict(services.resolver.stats()))


ROUTES: Dict[tuple, Callable] = {
    ('GET', '/descriptions'): handle_resolve,
    ('GET', '/stats'): handle_stats,
    ('POST', '/admin/descriptions'): handle_save,
    ('GET', '/admin/descriptions'): handle_list,
    ('GET', '/admin/descriptions/missing'): handle_missing,
    ('GET', '/admin/dashboard/stats'): handle_dashboard,
}


def handle_action(event, services: Services, settings) -> Dict[str, Any]:
    """Handle scheduled maintenance events."""
    action = event['action']

    if action == 'export_snapshot':
        count = export_snapshot(services.remote_store, settings['snapshot_path'])
        services.snapshot_store.refresh()
        return _response(200, {'message': 'Snapshot exported', 'entries': count})

    if action == 'migrate_keys':
        result = services.remote_store.migrate_legacy_keys(
            dry_run=bool(event.get('dryRun', False))
        )
        status_code = 500 if result.errors and not result.migrated else 200
        return _response(status_code, {
            'message': 'Key migration finished',
            'result': dataclasses.asdict(result)
        })

    return _response(400, {'message': f"Unknown action: {action}"})


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler for API Gateway requests and scheduled actions.

    Args:
        event: API Gateway proxy event or {"action": ...} payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and JSON body
    """
    settings = load_settings()
    setup_logging(settings['log_level'])
    logger = logging.getLogger(__name__)

    start_time = time.time()
    method = event.get('httpMethod', '').upper()
    path = (event.get('path') or '').rstrip('/') or '/'

    try:
        services = get_services(settings)

        if 'action' in event:
            logger.info(f"Running action {event['action']}")
            return handle_action(event, services, settings)

        handler = ROUTES.get((method, path))
        if handler is None:
            return _response(404, {'message': f"No route for {method} {path}"})

        if path.startswith('/admin/') and not event.get('requestContext', {}).get('authorizer'):
            return _response(401, {'message': 'Authentication required'})

        response = handler(event, services, settings)
        logger.info(
            f"{method} {path} -> {response['statusCode']}",
            extra={'duration_seconds': round(time.time() - start_time, 3)}
        )
        return response

    except ValidationError as e:
        logger.warning(f"Rejected request {method} {path}: {e}")
        return _error_response(400, 'Invalid request', e, fields=e.fields)

    except CalendarUnavailableError as e:
        logger.error(f"Calendar unavailable: {e}", exc_info=True)
        return _error_response(502, 'Holiday calendar unavailable', e)

    except RemoteUnavailableError as e:
        logger.error(f"Description store unavailable: {e}", exc_info=True)
        return _error_response(503, 'Description store unavailable', e)

    except Exception as e:
        logger.error(
            f"Request failed: {str(e)}",
            extra={
                'duration_seconds': round(time.time() - start_time, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _error_response(500, 'Request failed', e)
