"""
Reconciler: periodic resubmission of queued listens.
  restore queue → validate → chunk → backfill metadata → submit → remove + save
Accounts are processed independently; within an account chunks go strictly
in queue order and the first failed chunk ends that account's run.
"""
import logging
import random
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Optional, Sequence

from scrobbler.config.settings import settings
from scrobbler.services.library import LibraryResolver
from scrobbler.services.listenbrainz import ListenBrainzService, ServiceError
from scrobbler.services.models import Account, AudioItem, AudioItemMetadata, StoredListen
from scrobbler.services.musicbrainz import MetadataError, MetadataProvider
from scrobbler.services.offline_queue import OfflineQueue, QueueStoreError

logger = logging.getLogger(__name__)


class ValidationFailure(Exception):
    def __init__(self, listen: StoredListen, reason: str):
        self.listen = listen
        self.reason = reason
        super().__init__(f"Queued listen of item {listen.item_id} at {listen.listened_at}: {reason}")


@dataclass
class ReconcileReport:
    account_id: str
    sent: int = 0
    invalid: int = 0
    remaining: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def reconcile_interval(
    hours: int = settings.RECONCILE_INTERVAL_HOURS,
    jitter_minutes: int = settings.RECONCILE_JITTER_MINUTES,
) -> timedelta:
    """Time until the next run: fixed interval plus random jitter."""
    return timedelta(hours=hours, minutes=random.randrange(jitter_minutes) if jitter_minutes > 0 else 0)


class Reconciler:
    def __init__(
        self,
        service: ListenBrainzService,
        queue: OfflineQueue,
        library: LibraryResolver,
        metadata_provider: Optional[MetadataProvider] = None,
        *,
        chunk_size: int = settings.MAX_LISTENS_PER_REQUEST,
        backfill: bool = settings.MUSICBRAINZ_ENABLED,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self._service = service
        self._queue = queue
        self._library = library
        self._metadata_provider = metadata_provider
        self._chunk_size = chunk_size
        self._backfill = backfill and metadata_provider is not None

    async def run(self, accounts: Iterable[Account]) -> list[ReconcileReport]:
        try:
            await self._queue.restore()
        except QueueStoreError as exc:
            logger.warning("Queue restore failed, continuing with in-memory queue", extra={"error": str(exc)})

        reports = []
        for account in accounts:
            reports.append(await self.reconcile_account(account))
        return reports

    async def reconcile_account(self, account: Account) -> ReconcileReport:
        report = ReconcileReport(account_id=account.user_id)
        if not account.is_listen_submit_enabled:
            logger.debug("Listen submission disabled, skipping", extra={"account_id": account.user_id})
        else:
            try:
                await self._reconcile(account, report)
            except (ServiceError, QueueStoreError) as exc:
                logger.warning(
                    "Resubmitting listens failed",
                    extra={"account_id": account.user_id, "error": str(exc)},
                )
                report.error = str(exc)

        report.remaining = await self._queue.size(account.user_id)
        return report

    async def _reconcile(self, account: Account, report: ReconcileReport) -> None:
        listens = await self._queue.get(account.user_id)
        if not listens:
            logger.debug("No queued listens", extra={"account_id": account.user_id})
            return

        logger.info(
            "Resubmitting queued listens",
            extra={"account_id": account.user_id, "count": len(listens)},
        )

        valid: list[tuple[StoredListen, AudioItem]] = []
        invalid: list[StoredListen] = []
        for listen in listens:
            try:
                valid.append((listen, await self._validate(account, listen)))
            except ValidationFailure as exc:
                logger.debug("Dropping queued listen", extra={"reason": exc.reason, "item_id": listen.item_id})
                invalid.append(listen)

        if invalid:
            await self._queue.remove(account.user_id, invalid)
            await self._queue.save()
            report.invalid = len(invalid)
            logger.info(
                "Dropped invalid listens",
                extra={"account_id": account.user_id, "count": len(invalid)},
            )

        for chunk in _chunks(valid, self._chunk_size):
            payload = [
                self._service.build_listen(item, listen.listened_at, await self._metadata_for(listen, item))
                for listen, item in chunk
            ]
            if not await self._service.send_listens(account, payload):
                report.error = "Server rejected resubmitted listens"
                logger.info(
                    "Chunk not accepted, stopping for this run",
                    extra={"account_id": account.user_id, "count": len(chunk)},
                )
                return

            await self._queue.remove(account.user_id, [listen for listen, _ in chunk])
            await self._queue.save()
            report.sent += len(chunk)
            logger.info("Resubmitted listens", extra={"account_id": account.user_id, "count": len(chunk)})

    async def _validate(self, account: Account, listen: StoredListen) -> AudioItem:
        item = await self._library.get_item(listen.item_id)
        if item is None:
            raise ValidationFailure(listen, "item no longer exists")
        if not item.is_audio:
            raise ValidationFailure(listen, f"item is not audio ({item.media_type})")
        if not item.has_basic_metadata:
            raise ValidationFailure(listen, "item lacks artist or track name")
        if account.is_strict_mode_enabled and not item.recording_mbid:
            raise ValidationFailure(listen, "strict mode requires a recording MBID")
        return item

    async def _metadata_for(self, listen: StoredListen, item: AudioItem) -> Optional[AudioItemMetadata]:
        if not self._backfill or listen.has_recording_mbid:
            return listen.metadata
        try:
            return await self._metadata_provider.get_audio_item_metadata(item)
        except MetadataError as exc:
            logger.debug("Metadata backfill failed", extra={"item_id": item.id, "error": str(exc)})
            return listen.metadata


def _chunks(items: Sequence, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]
