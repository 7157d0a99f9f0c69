"""Export of curated remote descriptions to the local snapshot file."""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Union

from storage.dynamodb_store import DynamoDBDescriptionStore
from storage.snapshot_store import record_to_snapshot

logger = logging.getLogger(__name__)


def export_snapshot(remote_store: DynamoDBDescriptionStore, path: Union[str, Path]) -> int:
    """
    Write every curated remote record to the snapshot file.

    Entries are keyed "{holidayName}|{countryName}|{locale}". The file is
    replaced atomically so readers never see a partial document.

    Args:
        remote_store: Authoritative store to read from
        path: Snapshot file to write

    Returns:
        Number of entries written

    Raises:
        RemoteUnavailableError: If the remote store cannot be read
        OSError: If the snapshot file cannot be written
    """
    path = Path(path)
    records = [r for r in remote_store.fetch_all() if r.is_curated]

    document = {}
    for record in sorted(records, key=lambda r: (r.country_name, r.holiday_name, r.locale)):
        key = f"{record.holiday_name}|{record.country_name}|{record.locale}"
        document[key] = record_to_snapshot(record)

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix='.tmp')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(document, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, path)
    except Exception:
        os.unlink(tmp_path)
        raise

    logger.info(f"Exported {len(document)} curated descriptions to {path}")
    return len(document)
