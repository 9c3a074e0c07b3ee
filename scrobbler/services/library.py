"""
Library item resolution.
The media library is owned by the host; the queue only keeps item ids and
asks a resolver for the item when it is time to resubmit.
"""
import asyncio
import json
import logging
from pathlib import Path
from typing import Optional, Protocol

from scrobbler.services.models import AudioItem

logger = logging.getLogger(__name__)


class LibraryResolver(Protocol):
    async def get_item(self, item_id: str) -> Optional[AudioItem]:
        ...


class JsonLibrary:
    """
    Resolver backed by a JSON snapshot of the library: a list of item objects
    with the AudioItem field names. The file is re-read when it changes.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._items: dict[str, AudioItem] = {}
        self._mtime: Optional[float] = None

    async def get_item(self, item_id: str) -> Optional[AudioItem]:
        await asyncio.to_thread(self._reload_if_changed)
        return self._items.get(item_id)

    def _reload_if_changed(self) -> None:
        try:
            mtime = self._path.stat().st_mtime
        except FileNotFoundError:
            if self._items:
                logger.warning("Library snapshot disappeared", extra={"path": str(self._path)})
            self._items, self._mtime = {}, None
            return

        if mtime == self._mtime:
            return

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        self._items = {str(entry["id"]): AudioItem(**entry) for entry in raw}
        self._mtime = mtime
        logger.info("Library snapshot loaded", extra={"items": len(self._items)})
