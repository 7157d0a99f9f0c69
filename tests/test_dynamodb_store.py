"""Unit tests for DynamoDB description store."""
from decimal import Decimal

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from descriptions.errors import RemoteUnavailableError, ValidationError
from descriptions.models import DescriptionRecord
from storage.dynamodb_store import DynamoDBDescriptionStore

TABLE_NAME = 'test-holiday-descriptions'


@pytest.fixture
def dynamodb_table():
    """Create a mock DynamoDB table for testing."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        table = dynamodb.create_table(
            TableName=TABLE_NAME,
            KeySchema=[
                {'AttributeName': 'description_key', 'KeyType': 'HASH'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'description_key', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield table


@pytest.fixture
def store(dynamodb_table):
    """Create DynamoDBDescriptionStore instance with mock table."""
    return DynamoDBDescriptionStore(TABLE_NAME, region_name='us-east-1')


def put_legacy_item(table, key, holiday_name, country_name, locale,
                    description, is_manual=True, modified_at='2024-01-01T00:00:00+00:00'):
    """Store an item the way older tools did, under a non-canonical key."""
    table.put_item(Item={
        'description_key': key,
        'holiday_id': f'xx_2024_{holiday_name}',
        'holiday_name': holiday_name,
        'country_name': country_name,
        'locale': locale,
        'description': description,
        'confidence': Decimal('1.0') if is_manual else Decimal('0.7'),
        'is_manual': is_manual,
        'modified_at': modified_at
    })


def make_record(holiday_name='Good Friday', country_name='BA', locale='ko',
                description='Good Friday description', is_manual=True,
                holiday_id='ba_2024_2024-03-29_Good_Friday', modified_at=None):
    return DescriptionRecord(
        holiday_id=holiday_id,
        holiday_name=holiday_name,
        country_name=country_name,
        locale=locale,
        description=description,
        confidence=1.0 if is_manual else 0.6,
        is_manual=is_manual,
        modified_at=modified_at,
        modified_by='tester'
    )


class TestDynamoDBDescriptionStore:
    """Test cases for DynamoDBDescriptionStore class."""

    def test_fetch_one_empty_table(self, store):
        assert store.fetch_one(['good friday|BA|ko']) is None

    def test_fetch_one_no_keys(self, store):
        assert store.fetch_one([]) is None

    def test_upsert_stores_under_canonical_key(self, store, dynamodb_table):
        """New writes use the canonical storage key."""
        stored = store.upsert(make_record(country_name='Bosnia and Herzegovina'))

        item = dynamodb_table.get_item(
            Key={'description_key': 'good friday|BA|ko'}
        ).get('Item')

        assert item is not None
        assert item['description'] == 'Good Friday description'
        assert stored.source_key == 'good friday|BA|ko'
        assert stored.confidence == 1.0
        assert stored.generated_at is not None

    def test_upsert_is_idempotent_on_identity(self, store, dynamodb_table):
        """Saving the same entity again overwrites in place."""
        first = store.upsert(make_record(country_name='BA', description='First'))
        second = store.upsert(
            make_record(country_name='Bosnia and Herzegovina', description='Second')
        )

        items = dynamodb_table.scan()['Items']

        assert len(items) == 1
        assert items[0]['description'] == 'Second'
        assert second.generated_at == first.generated_at

    def test_fetch_one_returns_first_matching_key(self, store, dynamodb_table):
        """The first present key in preference order wins."""
        put_legacy_item(dynamodb_table, 'Good Friday-BA-ko',
                        'Good Friday', 'BA', 'ko', 'Dash keyed')
        put_legacy_item(dynamodb_table, 'Good Friday|Bosnia and Herzegovina|ko',
                        'Good Friday', 'Bosnia and Herzegovina', 'ko', 'Pipe keyed')

        record = store.fetch_one([
            'good friday|BA|ko',
            'Good Friday|Bosnia and Herzegovina|ko',
            'Good Friday-BA-ko'
        ])

        assert record.description == 'Pipe keyed'
        assert record.source_key == 'Good Friday|Bosnia and Herzegovina|ko'

    def test_fetch_one_converts_types(self, store, dynamodb_table):
        put_legacy_item(dynamodb_table, 'Carnival|AD|ko', 'Carnival', 'AD', 'ko',
                        'Text', is_manual=False)

        record = store.fetch_one(['Carnival|AD|ko'])

        assert isinstance(record.confidence, float)
        assert record.confidence == 0.7
        assert record.is_manual is False

    def test_fetch_one_wraps_client_errors(self, store, monkeypatch):
        """DynamoDB errors surface as RemoteUnavailableError."""
        def failing_get_item(**kwargs):
            raise ClientError(
                {'Error': {'Code': 'InternalServerError', 'Message': 'boom'}},
                'GetItem'
            )

        monkeypatch.setattr(store.table, 'get_item', failing_get_item)

        with pytest.raises(RemoteUnavailableError):
            store.fetch_one(['Carnival|AD|ko'])

    def test_fetch_one_missing_table(self, dynamodb_table):
        store = DynamoDBDescriptionStore('no-such-table', region_name='us-east-1')

        with pytest.raises(RemoteUnavailableError):
            store.fetch_one(['a', 'b'])

    def test_check_connection(self, store, dynamodb_table):
        assert store.check_connection() is True
        missing = DynamoDBDescriptionStore('no-such-table', region_name='us-east-1')
        assert missing.check_connection() is False

    def test_fetch_all_filters_by_country_equivalence(self, store, dynamodb_table):
        """Country filter matches both stored codes and names."""
        put_legacy_item(dynamodb_table, 'Carnival|AD|ko', 'Carnival', 'AD', 'ko', 'A')
        put_legacy_item(dynamodb_table, 'Carnival|Andorra|en', 'Carnival', 'Andorra', 'en', 'B')
        put_legacy_item(dynamodb_table, 'Epiphany|BA|ko', 'Epiphany', 'BA', 'ko', 'C')

        records = store.fetch_all(country='ad')

        assert sorted(r.description for r in records) == ['A', 'B']

    def test_fetch_all_filters_by_manual_and_locale(self, store, dynamodb_table):
        put_legacy_item(dynamodb_table, 'Carnival|AD|ko', 'Carnival', 'AD', 'ko', 'A')
        put_legacy_item(dynamodb_table, 'Carnival|AD|en', 'Carnival', 'AD', 'en', 'B',
                        is_manual=False)

        manual = store.fetch_all(is_manual=True)
        english = store.fetch_all(locale='en')

        assert [r.description for r in manual] == ['A']
        assert [r.description for r in english] == ['B']

    def test_fetch_many_paginates_most_recent_first(self, store, dynamodb_table):
        for i in range(5):
            put_legacy_item(
                dynamodb_table, f'Holiday {i}|AD|ko', f'Holiday {i}', 'AD', 'ko',
                f'Description {i}', modified_at=f'2024-01-0{i + 1}T00:00:00+00:00'
            )

        records, total = store.fetch_many(page=2, limit=2)

        assert total == 5
        assert [r.holiday_name for r in records] == ['Holiday 2', 'Holiday 1']

    def test_fetch_many_filters_by_year(self, store):
        store.upsert(make_record(holiday_id='ba_2024_2024-03-29_Good_Friday'))
        store.upsert(make_record(holiday_name='Epiphany',
                                 holiday_id='ba_2025_2025-01-06_Epiphany'))

        records, total = store.fetch_many(year=2025)

        assert total == 1
        assert records[0].holiday_name == 'Epiphany'

    def test_migrate_legacy_keys(self, store, dynamodb_table):
        """Legacy items are re-keyed; the newest wins on collision."""
        put_legacy_item(dynamodb_table, 'Good Friday|BA|ko', 'Good Friday', 'BA', 'ko',
                        'Older', modified_at='2024-01-01T00:00:00+00:00')
        put_legacy_item(dynamodb_table, 'Good Friday_Bosnia and Herzegovina_ko',
                        'Good Friday', 'Bosnia and Herzegovina', 'ko',
                        'Newer', modified_at='2024-06-01T00:00:00+00:00')
        put_legacy_item(dynamodb_table, 'Carnival-AD-en', 'Carnival', 'AD', 'en', 'Solo')

        result = store.migrate_legacy_keys()

        items = {i['description_key']: i for i in dynamodb_table.scan()['Items']}

        assert result.migrated == 2
        assert result.deleted == 3
        assert result.conflicts == 1
        assert result.errors == []
        assert set(items) == {'good friday|BA|ko', 'carnival|AD|en'}
        assert items['good friday|BA|ko']['description'] == 'Newer'

    def test_migrate_legacy_keys_dry_run(self, store, dynamodb_table):
        put_legacy_item(dynamodb_table, 'Carnival-AD-en', 'Carnival', 'AD', 'en', 'Solo')

        result = store.migrate_legacy_keys(dry_run=True)

        assert result.migrated == 1
        assert result.deleted == 1
        assert [i['description_key'] for i in dynamodb_table.scan()['Items']] == [
            'Carnival-AD-en'
        ]

    def test_migrate_leaves_canonical_items_alone(self, store, dynamodb_table):
        store.upsert(make_record())

        result = store.migrate_legacy_keys()

        assert result.migrated == 0
        assert result.deleted == 0

    def test_batch_write_large_batch(self, store, dynamodb_table):
        """More than 25 items are written across several batches."""
        items = [
            {
                'description_key': f'holiday {i}|AD|ko',
                'holiday_name': f'Holiday {i}',
                'country_name': 'AD',
                'locale': 'ko',
                'description': 'Text'
            }
            for i in range(30)
        ]

        assert store.batch_write_items(items) == 30
        assert len(dynamodb_table.scan()['Items']) == 30

        assert store.batch_delete_keys([i['description_key'] for i in items]) == 30
        assert dynamodb_table.scan()['Items'] == []

    def test_dashboard_stats(self, store, dynamodb_table):
        put_legacy_item(dynamodb_table, 'Carnival|AD|ko', 'Carnival', 'AD', 'ko', 'A')
        put_legacy_item(dynamodb_table, 'Carnival|Andorra|en', 'Carnival', 'Andorra',
                        'en', 'B', is_manual=False)
        put_legacy_item(dynamodb_table, 'Epiphany|BA|ko', 'Epiphany', 'BA', 'ko', 'C')

        stats = store.get_dashboard_stats()

        assert stats['total_descriptions'] == 3
        assert stats['manual_count'] == 2
        assert stats['ai_generated_count'] == 1
        assert stats['country_stats'] == [
            {'country': 'Andorra', 'total': 2},
            {'country': 'Bosnia and Herzegovina', 'total': 1}
        ]
        assert len(stats['recent_modifications']) == 3

    @pytest.mark.parametrize('page, limit', [(0, 20), (1, 0), (1, -1)])
    def test_fetch_many_rejects_invalid_pagination(self, store, dynamodb_table, page, limit):
        put_legacy_item(dynamodb_table, 'Carnival|AD|ko', 'Carnival', 'AD', 'ko', 'A')

        with pytest.raises(ValidationError):
            store.fetch_many(page=page, limit=limit)

    def test_upsert_as_manual_clears_ai_model(self, store, dynamodb_table):
        """Re-saving a generated record as manual drops its model attribution."""
        generated = make_record(is_manual=False)
        generated.ai_model = 'gpt-4o'
        store.upsert(generated)

        stored = store.upsert(make_record(description='Edited by hand'))
        item = dynamodb_table.get_item(
            Key={'description_key': 'good friday|BA|ko'}
        )['Item']

        assert 'ai_model' not in item
        assert stored.ai_model is None
        assert item['is_manual'] is True

    def test_upsert_keeps_ai_model_for_generated_records(self, store, dynamodb_table):
        generated = make_record(is_manual=False)
        generated.ai_model = 'gpt-4o'

        stored = store.upsert(generated)

        assert stored.ai_model == 'gpt-4o'
