"""
MusicBrainz service.
- Canonical recording metadata (recording MBID, artist credit, ISRCs)
  looked up by the item's track MBID.
- Search endpoint of the MusicBrainz web service, JSON format.
"""
import asyncio
import logging
from typing import Protocol

import aiohttp
from pydantic import ValidationError

from scrobbler.config.settings import settings
from scrobbler.services.models import ArtistCredit, AudioItem, AudioItemMetadata
from scrobbler.utils.http_client import GatewayError, Sleep, fetch_json
from scrobbler.utils.url_builder import build_url

logger = logging.getLogger(__name__)


class MetadataError(Exception):
    pass


class MetadataProvider(Protocol):
    async def get_audio_item_metadata(self, item: AudioItem) -> AudioItemMetadata:
        ...


class MusicBrainzProvider:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        base_url: str = settings.MUSICBRAINZ_API_URL,
        sleep: Sleep = asyncio.sleep,
    ):
        self._session = session
        self._base_url = base_url
        self._sleep = sleep

    async def get_audio_item_metadata(self, item: AudioItem) -> AudioItemMetadata:
        if not item.track_mbid:
            raise MetadataError(f"Item {item.id} has no track MBID")

        url = build_url(self._base_url, "ws/2/recording")
        try:
            data = await fetch_json(
                self._session,
                url,
                params=[("query", f"tid:{item.track_mbid}"), ("fmt", "json")],
                sleep=self._sleep,
            )
        except GatewayError as exc:
            raise MetadataError(f"Recording lookup failed for track {item.track_mbid}") from exc

        recordings = data.get("recordings", []) if isinstance(data, dict) else []
        if not recordings:
            raise MetadataError(f"No recording matches track {item.track_mbid}")

        try:
            metadata = _parse_recording(recordings[0])
        except (ValidationError, TypeError, AttributeError, KeyError) as exc:
            raise MetadataError(f"Malformed recording for track {item.track_mbid}: {exc}") from exc
        logger.debug(
            "MusicBrainz metadata",
            extra={"item_id": item.id, "recording_mbid": metadata.recording_mbid},
        )
        return metadata


def _parse_recording(recording: dict) -> AudioItemMetadata:
    credits = [
        ArtistCredit(name=c.get("name", ""), join_phrase=c.get("joinphrase", ""))
        for c in recording.get("artist-credit", [])
    ]
    return AudioItemMetadata(
        recording_mbid=recording.get("id", ""),
        artist_credits=credits,
        isrcs=recording.get("isrcs", []),
    )
