"""DynamoDB-backed authoritative store for holiday descriptions."""
import logging
from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from descriptions.errors import RemoteUnavailableError, ValidationError
from descriptions.models import DescriptionRecord, MigrationResult
from identity.key_variants import KeyVariantGenerator

logger = logging.getLogger(__name__)

KEY_ATTRIBUTE = 'description_key'


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DynamoDBDescriptionStore:
    """Manager for description records stored in DynamoDB."""

    BATCH_SIZE = 25  # DynamoDB batch write limit
    BATCH_GET_LIMIT = 100  # DynamoDB batch get limit
    RECENT_MODIFICATIONS = 10

    def __init__(
        self,
        table_name: str,
        timeout: int = 10,
        region_name: Optional[str] = None,
        key_generator: Optional[KeyVariantGenerator] = None
    ):
        """
        Initialize DynamoDB resource and table reference.

        Each call is a single attempt bounded by the connect/read timeout;
        the resolver treats a failed call as the tier being unavailable.

        Args:
            table_name: Name of the DynamoDB table
            timeout: Connect and read timeout in seconds
            region_name: AWS region (default: from environment)
            key_generator: Generator used for canonical storage keys
        """
        self.table_name = table_name
        self.key_generator = key_generator or KeyVariantGenerator()
        self.normalizer = self.key_generator.normalizer

        config = Config(
            connect_timeout=timeout,
            read_timeout=timeout,
            retries={'mode': 'standard', 'total_max_attempts': 1}
        )
        self.dynamodb = boto3.resource(
            'dynamodb', region_name=region_name, config=config
        )
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBDescriptionStore for table: {table_name}")

    def check_connection(self) -> bool:
        """Return True if the table can be described."""
        try:
            self.table.load()
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"DynamoDB table {self.table_name} unavailable: {e}")
            return False

    def fetch_one(self, keys: Sequence[str]) -> Optional[DescriptionRecord]:
        """
        Return the record stored under the first matching key.

        Args:
            keys: Candidate keys in order of preference

        Returns:
            DescriptionRecord or None if no key is present

        Raises:
            RemoteUnavailableError: On any DynamoDB error
        """
        keys = list(dict.fromkeys(keys))
        if not keys:
            return None

        try:
            if len(keys) == 1:
                response = self.table.get_item(Key={KEY_ATTRIBUTE: keys[0]})
                item = response.get('Item')
                return self._item_to_record(item) if item else None

            items = self._batch_get(keys)
        except (ClientError, BotoCoreError) as e:
            raise RemoteUnavailableError(
                f"Error reading from DynamoDB table {self.table_name}: {e}"
            ) from e

        for key in keys:
            if key in items:
                record = self._item_to_record(items[key])
                if record:
                    return record

        return None

    def fetch_all(
        self,
        country: Optional[str] = None,
        locale: Optional[str] = None,
        is_manual: Optional[bool] = None
    ) -> List[DescriptionRecord]:
        """
        Retrieve all matching records using a Scan operation.

        Country filtering is done after the scan since stored country
        names may be either codes or names.

        Raises:
            RemoteUnavailableError: On any DynamoDB error
        """
        filter_expression = None
        if locale:
            filter_expression = Attr('locale').eq(locale)
        if is_manual is not None:
            condition = Attr('is_manual').eq(is_manual)
            filter_expression = (
                condition if filter_expression is None
                else filter_expression & condition
            )

        try:
            items = self._scan_items(filter_expression)
        except (ClientError, BotoCoreError) as e:
            raise RemoteUnavailableError(
                f"Error scanning DynamoDB table {self.table_name}: {e}"
            ) from e

        records = []
        for item in items:
            record = self._item_to_record(item)
            if record is None:
                continue
            if country and not self.normalizer.same_country(record.country_name, country):
                continue
            records.append(record)

        logger.debug(f"Retrieved {len(records)} description records from DynamoDB")
        return records

    def fetch_many(
        self,
        country: Optional[str] = None,
        year: Optional[int] = None,
        is_manual: Optional[bool] = None,
        locale: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[DescriptionRecord], int]:
        """
        Retrieve one page of records, most recently modified first.

        Args:
            country: Country code or name to filter by
            year: Year encoded in the holiday_id ("{cc}_{year}_...")
            is_manual: Restrict to manual or AI-generated records
            locale: Locale to filter by
            page: 1-based page number
            limit: Page size

        Returns:
            Tuple of (records on the page, total matching count)

        Raises:
            ValidationError: If page or limit is below 1
            RemoteUnavailableError: On any DynamoDB error
        """
        if page < 1 or limit < 1:
            raise ValidationError(
                f"Invalid pagination: page={page}, limit={limit}", fields=['page', 'limit']
            )

        records = self.fetch_all(country=country, locale=locale, is_manual=is_manual)

        if year is not None:
            records = [r for r in records if self._record_year(r) == int(year)]

        records.sort(key=lambda r: r.modified_at or '', reverse=True)

        start = (page - 1) * limit
        return records[start:start + limit], len(records)

    def upsert(self, record: DescriptionRecord) -> DescriptionRecord:
        """
        Create or overwrite the record under its canonical key.

        generated_at and created_at are set only on first write.

        Returns:
            The stored record

        Raises:
            RemoteUnavailableError: On any DynamoDB error
        """
        storage_key = self.key_generator.storage_key(record.identity())
        now = utc_now()

        values = {
            ':holiday_id': record.holiday_id,
            ':holiday_name': record.holiday_name,
            ':country_name': record.country_name,
            ':locale': record.locale,
            ':description': record.description,
            ':confidence': Decimal(str(record.confidence)),
            ':is_manual': record.is_manual,
            ':last_used': record.last_used or now,
            ':modified_at': record.modified_at or now,
            ':modified_by': record.modified_by or 'system',
            ':generated_at': record.generated_at or now,
            ':now': now
        }
        update_expression = (
            'SET holiday_id = :holiday_id, holiday_name = :holiday_name, '
            'country_name = :country_name, locale = :locale, '
            'description = :description, confidence = :confidence, '
            'is_manual = :is_manual, last_used = :last_used, '
            'modified_at = :modified_at, modified_by = :modified_by, '
            'updated_at = :now, '
            'generated_at = if_not_exists(generated_at, :generated_at), '
            'created_at = if_not_exists(created_at, :now)'
        )
        if record.ai_model:
            update_expression += ', ai_model = :ai_model'
            values[':ai_model'] = record.ai_model
        else:
            update_expression += ' REMOVE ai_model'

        try:
            response = self.table.update_item(
                Key={KEY_ATTRIBUTE: storage_key},
                UpdateExpression=update_expression,
                ExpressionAttributeValues=values,
                ReturnValues='ALL_NEW'
            )
        except (ClientError, BotoCoreError) as e:
            raise RemoteUnavailableError(
                f"Error writing description {storage_key!r}: {e}"
            ) from e

        logger.info(f"Upserted description {storage_key!r}")
        return self._item_to_record(response['Attributes'])

    def migrate_legacy_keys(self, dry_run: bool = False) -> MigrationResult:
        """
        Re-key items stored under legacy keys to their canonical key.

        When several items share a canonical key, the most recently
        modified one is kept.

        Args:
            dry_run: Only report what would change

        Returns:
            MigrationResult with counts of migrated, deleted and conflicting items
        """
        errors = []

        try:
            items = self._scan_items()
        except (ClientError, BotoCoreError) as e:
            error_msg = f"Error scanning table for migration: {e}"
            logger.error(error_msg)
            return MigrationResult(migrated=0, deleted=0, conflicts=0, errors=[error_msg])

        groups: Dict[str, List[dict]] = {}
        for item in items:
            record = self._item_to_record(item)
            if record is None:
                errors.append(f"Unreadable item: {item.get(KEY_ATTRIBUTE)}")
                continue
            canonical = self.key_generator.storage_key(record.identity())
            groups.setdefault(canonical, []).append(item)

        items_to_write = []
        keys_to_delete = []
        conflicts = 0

        for canonical, group in groups.items():
            group.sort(key=lambda i: i.get('modified_at') or '', reverse=True)
            winner = group[0]
            if len(group) > 1:
                conflicts += 1

            if winner[KEY_ATTRIBUTE] != canonical:
                migrated_item = dict(winner)
                migrated_item[KEY_ATTRIBUTE] = canonical
                items_to_write.append(migrated_item)

            keys_to_delete.extend(
                item[KEY_ATTRIBUTE] for item in group
                if item[KEY_ATTRIBUTE] != canonical
            )

        logger.info(
            f"Migration plan: {len(items_to_write)} to re-key, "
            f"{len(keys_to_delete)} legacy keys to delete, {conflicts} conflicts"
        )

        if dry_run:
            return MigrationResult(
                migrated=len(items_to_write),
                deleted=len(keys_to_delete),
                conflicts=conflicts,
                errors=errors
            )

        migrated = self.batch_write_items(items_to_write)
        # Keep legacy items if their replacements were not all written.
        if migrated < len(items_to_write):
            errors.append(
                f"Only {migrated} of {len(items_to_write)} items re-keyed; "
                f"legacy keys kept"
            )
            deleted = 0
        else:
            deleted = self.batch_delete_keys(keys_to_delete)

        return MigrationResult(
            migrated=migrated, deleted=deleted, conflicts=conflicts, errors=errors
        )

    def batch_write_items(self, items: List[dict]) -> int:
        """
        Write raw items to DynamoDB in batches of 25.

        Returns:
            Count of successfully written items
        """
        if not items:
            return 0

        logger.info(f"Writing {len(items)} items to DynamoDB")
        success_count = 0

        for i in range(0, len(items), self.BATCH_SIZE):
            batch = items[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer() as writer:
                    for item in batch:
                        writer.put_item(Item=item)
                success_count += len(batch)

            except ClientError as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                continue

        logger.info(f"Successfully wrote {success_count} items")
        return success_count

    def batch_delete_keys(self, keys: List[str]) -> int:
        """
        Delete items by key in batches of 25.

        Returns:
            Count of successfully deleted items
        """
        if not keys:
            return 0

        logger.info(f"Deleting {len(keys)} items from DynamoDB")
        success_count = 0

        for i in range(0, len(keys), self.BATCH_SIZE):
            batch = keys[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer() as writer:
                    for key in batch:
                        writer.delete_item(Key={KEY_ATTRIBUTE: key})
                success_count += len(batch)

            except ClientError as e:
                logger.error(
                    f"Error deleting batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                continue

        logger.info(f"Successfully deleted {success_count} items")
        return success_count

    def get_dashboard_stats(self) -> Dict[str, Any]:
        """
        Summarize the table for the admin dashboard.

        Raises:
            RemoteUnavailableError: On any DynamoDB error
        """
        records = self.fetch_all()
        manual_count = sum(1 for r in records if r.is_manual)

        country_counts = Counter()
        for record in records:
            country = self.normalizer.try_normalize(record.country_name)
            country_counts[country.name if country else record.country_name] += 1

        recent = sorted(records, key=lambda r: r.modified_at or '', reverse=True)

        return {
            'total_descriptions': len(records),
            'manual_count': manual_count,
            'ai_generated_count': len(records) - manual_count,
            'recent_modifications': [
                {
                    'holiday_name': r.holiday_name,
                    'country_name': r.country_name,
                    'locale': r.locale,
                    'modified_at': r.modified_at,
                    'modified_by': r.modified_by
                }
                for r in recent[:self.RECENT_MODIFICATIONS]
            ],
            'country_stats': [
                {'country': country, 'total': total}
                for country, total in sorted(country_counts.items())
            ]
        }

    def _scan_items(self, filter_expression=None) -> List[dict]:
        """Scan the whole table, following pagination."""
        scan_kwargs = {}
        if filter_expression is not None:
            scan_kwargs['FilterExpression'] = filter_expression

        response = self.table.scan(**scan_kwargs)
        items = response.get('Items', [])

        while 'LastEvaluatedKey' in response:
            response = self.table.scan(
                ExclusiveStartKey=response['LastEvaluatedKey'], **scan_kwargs
            )
            items.extend(response.get('Items', []))

        return items

    def _batch_get(self, keys: List[str]) -> Dict[str, dict]:
        """Fetch items by key, following UnprocessedKeys."""
        found = {}

        for i in range(0, len(keys), self.BATCH_GET_LIMIT):
            request = {
                self.table_name: {
                    'Keys': [{KEY_ATTRIBUTE: key} for key in keys[i:i + self.BATCH_GET_LIMIT]]
                }
            }

            while request:
                response = self.dynamodb.batch_get_item(RequestItems=request)
                for item in response.get('Responses', {}).get(self.table_name, []):
                    found[item[KEY_ATTRIBUTE]] = item
                request = response.get('UnprocessedKeys') or None

        return found

    def _record_year(self, record: DescriptionRecord) -> Optional[int]:
        parts = record.holiday_id.split('_')
        if len(parts) > 1 and parts[1].isdigit():
            return int(parts[1])
        return None

    def _item_to_record(self, item: dict) -> Optional[DescriptionRecord]:
        """
        Convert DynamoDB item to DescriptionRecord object.

        Returns:
            DescriptionRecord or None if conversion fails
        """
        try:
            return DescriptionRecord(
                holiday_id=item.get('holiday_id', ''),
                holiday_name=item['holiday_name'],
                country_name=item['country_name'],
                locale=item['locale'],
                description=item['description'],
                confidence=float(item.get('confidence', 0)),
                is_manual=bool(item.get('is_manual', False)),
                generated_at=item.get('generated_at'),
                last_used=item.get('last_used'),
                modified_at=item.get('modified_at'),
                modified_by=item.get('modified_by'),
                ai_model=item.get('ai_model'),
                source_key=item.get(KEY_ATTRIBUTE)
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Failed to convert item to DescriptionRecord: {e}")
            return None
