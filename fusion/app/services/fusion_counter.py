"""Global "fusions created" counter persisted to a small JSON file.

File format::

    {"count": 42, "lastUpdated": "2026-01-01T12:00:00+00:00"}
"""

import asyncio
import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from fusion.app.core.logging import get_logger
from fusion.app.exceptions import CounterStorageError

logger = get_logger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class FusionCounter:
    """Read and increment the counter; all file access is serialized by a lock.

    A missing file is created with ``count = 0``. Unparseable content reads
    as zero rather than failing, while filesystem errors raise
    ``CounterStorageError``.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _ensure_file(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self._write({"count": 0, "lastUpdated": _now_iso()})

    def _read_count(self) -> int:
        self._ensure_file()
        raw = self.path.read_bytes()
        try:
            data = json.loads(raw.decode("utf-8"))
        except ValueError:
            # UnicodeDecodeError and JSONDecodeError are both ValueErrors
            logger.warning(f"Fusion counter file {self.path} is corrupt; treating as 0")
            return 0
        count = data.get("count") if isinstance(data, dict) else None
        if not isinstance(count, int) or isinstance(count, bool) or count < 0:
            logger.warning(f"Fusion counter file {self.path} has no valid count; treating as 0")
            return 0
        return count

    def _write(self, data: Dict[str, Any]) -> None:
        # Unique sibling temp file, then rename: readers never see a partial file
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self.path.parent,
            prefix=self.path.name + ".",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            json.dump(data, tmp, indent=2)
        try:
            os.replace(tmp.name, self.path)
        except OSError:
            Path(tmp.name).unlink(missing_ok=True)
            raise

    def _increment(self) -> int:
        new_count = self._read_count() + 1
        self._write({"count": new_count, "lastUpdated": _now_iso()})
        return new_count

    async def read(self) -> int:
        """Return the current count.

        Raises:
            CounterStorageError: If the file cannot be created or read
        """
        async with self._lock:
            try:
                return await asyncio.to_thread(self._read_count)
            except OSError as e:
                logger.error(f"Error reading fusion count: {e}")
                raise CounterStorageError(
                    str(e), public_message="Failed to get fusion count"
                ) from e

    async def increment(self) -> int:
        """Add one fusion and return the new count.

        Raises:
            CounterStorageError: If the file cannot be read or written
        """
        async with self._lock:
            try:
                return await asyncio.to_thread(self._increment)
            except OSError as e:
                logger.error(f"Error incrementing fusion count: {e}")
                raise CounterStorageError(
                    str(e), public_message="Failed to increment fusion count"
                ) from e
