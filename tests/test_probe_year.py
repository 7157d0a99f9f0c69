"""Probe: admin listing year filter vs records written by save()."""
import os

import boto3
from moto import mock_aws

from descriptions.hybrid_resolver import HybridResolver
from storage.dynamodb_store import DynamoDBDescriptionStore
from storage.snapshot_store import SnapshotStore


@mock_aws
def test_probe_year_filter_drops_saved(tmp_path):
    os.environ['AWS_DEFAULT_REGION'] = 'us-east-1'
    boto3.resource('dynamodb', region_name='us-east-1').create_table(
        TableName='t', KeySchema=[{'AttributeName': 'description_key', 'KeyType': 'HASH'}],
        AttributeDefinitions=[{'AttributeName': 'description_key', 'AttributeType': 'S'}],
        BillingMode='PAY_PER_REQUEST')
    store = DynamoDBDescriptionStore('t', region_name='us-east-1')
    resolver = HybridResolver(store, SnapshotStore(tmp_path / 'none.json'))
    saved = resolver.save('Carnival', 'AD', 'ko', 'Carnival text', is_manual=True)
    print('holiday_id =', saved.holiday_id)
    all_records, total_all = store.fetch_many()
    year_records, total_year = store.fetch_many(year=2024)
    print('total', total_all, 'year=2024', total_year)
    assert total_year == total_all
