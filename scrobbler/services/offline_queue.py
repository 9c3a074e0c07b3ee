"""
Offline queue for listens that could not be delivered.
- In-memory map of account id -> ordered listens, guarded by one lock.
- The whole map is persisted as a single JSON document.
"""
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Iterable, Optional

from pydantic import TypeAdapter, ValidationError

from scrobbler.services.models import StoredListen

logger = logging.getLogger(__name__)

_DOCUMENT = TypeAdapter(dict[str, list[StoredListen]])


class QueueStoreError(Exception):
    pass


class OfflineQueue:
    """
    Listens waiting for (re)delivery, per account.

    Every operation holds the same lock for its whole duration. Nothing that
    touches the network may run under it.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._listens: dict[str, list[StoredListen]] = {}

    @property
    def path(self) -> Path:
        return self._path

    async def add(self, account_id: str, listen: StoredListen, *, save: bool = False) -> None:
        """Append a listen. With ``save`` the document is written before the lock is released."""
        async with self._lock:
            self._listens.setdefault(account_id, []).append(listen)
            if save:
                await asyncio.to_thread(self._write, self._dump())
        logger.debug(
            "Listen queued",
            extra={"account_id": account_id, "item_id": listen.item_id, "listened_at": listen.listened_at},
        )

    async def get(self, account_id: str) -> list[StoredListen]:
        """Snapshot of the account's listens, oldest first."""
        async with self._lock:
            return [listen.model_copy(deep=True) for listen in self._listens.get(account_id, [])]

    async def remove(self, account_id: str, listens: Iterable[StoredListen]) -> int:
        """Drop every entry matching one of ``listens`` by item and timestamp."""
        keys = {listen.key for listen in listens}
        async with self._lock:
            current = self._listens.get(account_id)
            if not current:
                return 0
            kept = [listen for listen in current if listen.key not in keys]
            removed = len(current) - len(kept)
            self._listens[account_id] = kept
        return removed

    async def size(self, account_id: Optional[str] = None) -> int:
        async with self._lock:
            if account_id is not None:
                return len(self._listens.get(account_id, []))
            return sum(len(v) for v in self._listens.values())

    async def save(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write, self._dump())

    async def restore(self) -> None:
        """
        Replace the in-memory state with the document's.
        A missing document means an empty queue; a malformed one raises
        QueueStoreError and leaves the current state as it was.
        """
        async with self._lock:
            self._listens = await asyncio.to_thread(self._read)

    def _dump(self) -> str:
        data = _DOCUMENT.dump_python(self._listens, mode="json", by_alias=True, exclude_none=True)
        return json.dumps(data, indent=2, ensure_ascii=False)

    def _write(self, content: str) -> None:
        # Write atomically so a crash never leaves half a document behind
        tmp = self._path.with_name(f"{self._path.name}.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(content, encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as exc:
            raise QueueStoreError(f"Cannot write queue document {self._path}: {exc}") from exc
        logger.debug("Queue saved", extra={"path": str(self._path)})

    def _read(self) -> dict[str, list[StoredListen]]:
        try:
            content = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No queue document yet, starting empty", extra={"path": str(self._path)})
            return {}
        except UnicodeDecodeError as exc:
            raise QueueStoreError(f"Queue document {self._path} is not valid UTF-8") from exc
        except OSError as exc:
            raise QueueStoreError(f"Cannot read queue document {self._path}: {exc}") from exc

        try:
            return _DOCUMENT.validate_json(content)
        except ValidationError as exc:
            raise QueueStoreError(f"Malformed queue document {self._path}") from exc
