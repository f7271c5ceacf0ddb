"""
JSON file store.

Durable key-value and append-log storage backed by files under a data
directory. Keys map to paths: ``history`` -> ``history.jsonl`` for append
logs, ``memory/<digest>`` -> ``memory/<digest>.json`` for values.
"""

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, List

from server.errors import PersistenceError
from server.utils.logger import logger

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9_.-]')


class JsonStore:
    """File-backed store for JSON-serializable records and values."""

    def __init__(self, data_dir: str):
        self.data_dir = Path(data_dir)

    def _path(self, key: str, suffix: str) -> Path:
        parts = [_UNSAFE_CHARS.sub('_', part).strip('.') or '_' for part in key.split('/') if part]
        if not parts:
            raise PersistenceError(f"Invalid storage key {key!r}")
        return self.data_dir.joinpath(*parts[:-1], parts[-1] + suffix)

    def append_record(self, key: str, record: Dict[str, Any]):
        """Append one record to the log stored under ``key``."""
        path = self._path(key, '.jsonl')
        try:
            line = json.dumps(record, ensure_ascii=False)
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'a', encoding='utf-8') as f:
                f.write(line + '\n')
                f.flush()
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to append to {path}: {e}") from e

    def read_records(self, key: str) -> List[Dict[str, Any]]:
        """Read the log stored under ``key``. Corrupt lines are skipped."""
        path = self._path(key, '.jsonl')
        if not path.exists():
            return []

        try:
            with open(path, 'r', encoding='utf-8') as f:
                lines = f.readlines()
        except (OSError, UnicodeDecodeError) as e:
            raise PersistenceError(f"Failed to read {path}: {e}") from e

        records = []
        for lineno, line in enumerate(lines, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Skipping corrupt record at {path}:{lineno}")
                continue
            if not isinstance(record, dict):
                logger.warning(f"Skipping non-object record at {path}:{lineno}")
                continue
            records.append(record)
        return records

    def read_value(self, key: str, default: Any = None) -> Any:
        """Read the JSON value stored under ``key``."""
        path = self._path(key, '.json')
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding='utf-8'))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to read {path}: {e}") from e

    def write_value(self, key: str, value: Any):
        """Atomically replace the JSON value stored under ``key``."""
        path = self._path(key, '.json')
        tmp_path = path.with_name(path.name + '.tmp')
        try:
            data = json.dumps(value, ensure_ascii=False, indent=2)
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(data, encoding='utf-8')
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to write {path}: {e}") from e
