"""
Scrobbler - Main Entrypoint
Periodically resubmits listens queued while ListenBrainz was unreachable.
"""
import asyncio
import logging
import sys
from dataclasses import asdict

from scrobbler.config.settings import settings
from scrobbler.services.library import JsonLibrary
from scrobbler.services.listenbrainz import ListenBrainzClient, ListenBrainzService
from scrobbler.services.musicbrainz import MusicBrainzProvider
from scrobbler.services.offline_queue import OfflineQueue
from scrobbler.services.reconciler import Reconciler, reconcile_interval
from scrobbler.utils.http_client import build_session
from scrobbler.utils.logging import setup_logging


async def main() -> None:
    setup_logging()
    logger = logging.getLogger(__name__)

    if settings.LIBRARY_FILE is None:
        logger.error("LIBRARY_FILE is not configured, cannot validate queued listens")
        return

    queue = OfflineQueue(settings.QUEUE_FILE)
    library = JsonLibrary(settings.LIBRARY_FILE)

    logger.info(
        "Starting reconciler",
        extra={"env": settings.ENV, "accounts": len(settings.ACCOUNTS), "queue": str(queue.path)},
    )
    async with build_session() as session:
        service = ListenBrainzService(ListenBrainzClient(session))
        metadata = MusicBrainzProvider(session) if settings.MUSICBRAINZ_ENABLED else None
        reconciler = Reconciler(service, queue, library, metadata)

        # Runs are sequential, so two runs never overlap
        while True:
            try:
                for report in await reconciler.run(settings.ACCOUNTS):
                    logger.info("Account reconciled", extra=asdict(report))
            except Exception:
                logger.exception("Reconcile run failed")

            delay = reconcile_interval()
            logger.info("Next run scheduled", extra={"in_seconds": int(delay.total_seconds())})
            await asyncio.sleep(delay.total_seconds())


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        sys.exit(0)
