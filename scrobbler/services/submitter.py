"""
Submitter: live submissions from playback events.
  event → ListenBrainz service → (on failure) offline queue
Listens that cannot be delivered right now are queued for the reconciler.
Feedback is never queued: the favorite state can be synced again later.
"""
import asyncio
import logging
import time
from typing import Optional

from scrobbler.config.settings import settings
from scrobbler.services.listenbrainz import ListenBrainzService, ServiceError
from scrobbler.services.models import Account, AudioItem, AudioItemMetadata
from scrobbler.services.musicbrainz import MetadataError, MetadataProvider
from scrobbler.services.offline_queue import OfflineQueue
from scrobbler.utils.http_client import Sleep

logger = logging.getLogger(__name__)

# The server needs a moment before a fresh listen shows up in the user's listens.
_MSID_LOOKUP_ATTEMPTS = 4
_MSID_LOOKUP_WAIT = 5


class Submitter:
    def __init__(
        self,
        service: ListenBrainzService,
        queue: OfflineQueue,
        metadata_provider: Optional[MetadataProvider] = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ):
        self._service = service
        self._queue = queue
        self._metadata_provider = metadata_provider
        self._sleep = sleep

    async def send_now_playing(
        self,
        account: Account,
        item: AudioItem,
        metadata: Optional[AudioItemMetadata] = None,
        *,
        started_at: Optional[int] = None,
    ) -> bool:
        """
        Send a "playing now" notice.
        If it cannot be delivered, a listen stamped with the playback start
        time is queued instead.
        """
        if not account.is_listen_submit_enabled:
            logger.debug("Listen submission disabled", extra={"account_id": account.user_id})
            return False

        started_at = started_at if started_at is not None else int(time.time())
        try:
            ok = await self._service.send_now_playing(account, item, metadata)
        except ServiceError as exc:
            logger.info("Now playing not delivered", extra={"item": item.display_name, "error": str(exc)})
            ok = False

        if not ok:
            await self._enqueue(account, item, metadata, started_at)
        return ok

    async def send_listen(
        self,
        account: Account,
        item: AudioItem,
        metadata: Optional[AudioItemMetadata],
        listened_at: int,
    ) -> bool:
        if not account.is_listen_submit_enabled:
            logger.debug("Listen submission disabled", extra={"account_id": account.user_id})
            return False

        try:
            ok = await self._service.send_listen(account, item, metadata, listened_at)
        except ServiceError as exc:
            logger.info("Listen not delivered", extra={"item": item.display_name, "error": str(exc)})
            ok = False

        if not ok:
            await self._enqueue(account, item, metadata, listened_at)
            return False

        logger.info("Listen sent", extra={"account_id": account.user_id, "item": item.display_name})
        if account.is_favorites_sync_enabled and item.is_favorite:
            await self.send_feedback(account, item, True, listened_at=listened_at)
        return True

    async def send_feedback(
        self,
        account: Account,
        item: AudioItem,
        is_favorite: bool,
        *,
        listened_at: Optional[int] = None,
    ) -> bool:
        """
        Sync the favorite state of an item. Best-effort: failures are logged
        and reported as False.
        """
        recording_mbid = item.recording_mbid or await self._lookup_recording_mbid(item)
        recording_msid = None
        try:
            if not recording_mbid:
                if listened_at is None:
                    logger.debug("No recording MBID and no listen timestamp, skipping feedback")
                    return False
                recording_msid = await self._lookup_recording_msid(account, listened_at)
                if not recording_msid:
                    logger.info("No recording MSID found, skipping feedback", extra={"ts": listened_at})
                    return False

            ok = await self._service.send_feedback(account, is_favorite, recording_mbid, recording_msid)
        except ServiceError as exc:
            logger.info("Feedback not delivered", extra={"item": item.display_name, "error": str(exc)})
            return False

        if ok:
            logger.info("Favorite synced", extra={"item": item.display_name, "favorite": is_favorite})
        return ok

    async def _enqueue(
        self,
        account: Account,
        item: AudioItem,
        metadata: Optional[AudioItemMetadata],
        listened_at: int,
    ) -> None:
        await self._queue.add(account.user_id, item.as_stored_listen(listened_at, metadata), save=True)
        logger.info("Listen queued for later", extra={"account_id": account.user_id, "ts": listened_at})

    async def _lookup_recording_mbid(self, item: AudioItem) -> Optional[str]:
        if self._metadata_provider is None or not settings.MUSICBRAINZ_ENABLED:
            return None
        try:
            metadata = await self._metadata_provider.get_audio_item_metadata(item)
        except MetadataError as exc:
            logger.debug("Recording MBID lookup failed", extra={"item_id": item.id, "error": str(exc)})
            return None
        return metadata.recording_mbid or None

    async def _lookup_recording_msid(self, account: Account, listened_at: int) -> str:
        wait = 1
        for attempt in range(1, _MSID_LOOKUP_ATTEMPTS + 1):
            msid = await self._service.get_recording_msid_by_listen_ts(account, listened_at)
            if msid or attempt == _MSID_LOOKUP_ATTEMPTS:
                return msid
            wait *= _MSID_LOOKUP_WAIT
            logger.debug("Recording MSID not found yet", extra={"ts": listened_at, "wait": wait})
            await self._sleep(wait)
        return ""
