import base64
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ListenType(str, Enum):
    SINGLE = "single"
    PLAYING_NOW = "playing_now"
    IMPORT = "import"


class FeedbackScore(IntEnum):
    HATED = -1
    NEUTRAL = 0
    LOVED = 1


# ── Wire records ────────────────────────────────────────────────────────────


class AdditionalInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    artist_mbids: Optional[list[str]] = None
    release_group_mbid: Optional[str] = None
    release_mbid: Optional[str] = None
    recording_mbid: Optional[str] = None
    recording_msid: Optional[str] = None
    track_mbid: Optional[str] = None
    track_number: Optional[int] = Field(default=None, alias="tracknumber")
    isrc: Optional[str] = None
    tags: Optional[list[str]] = None
    duration_ms: Optional[int] = None
    media_player: Optional[str] = None
    submission_client: Optional[str] = None
    submission_client_version: Optional[str] = None


class TrackMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    artist_name: str
    track_name: str
    release_name: Optional[str] = None
    additional_info: Optional[AdditionalInfo] = None


class Listen(BaseModel):
    """A single listen; without ``listened_at`` it is a "playing now" notice."""

    model_config = ConfigDict(frozen=True)

    listened_at: Optional[int] = None
    track_metadata: TrackMetadata
    # Assigned by the server, only present on listens read back from it.
    recording_msid: Optional[str] = None

    def find_recording_msid(self) -> Optional[str]:
        if self.recording_msid:
            return self.recording_msid
        info = self.track_metadata.additional_info
        return info.recording_msid if info else None


# ── Queue entries ───────────────────────────────────────────────────────────


class ArtistCredit(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    join_phrase: str = ""


class AudioItemMetadata(BaseModel):
    """Canonical metadata fetched from the metadata provider."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    recording_mbid: str = ""
    artist_credits: list[ArtistCredit] = []
    isrcs: list[str] = []

    @property
    def full_credit_string(self) -> str:
        return "".join(f"{c.name}{c.join_phrase}" for c in self.artist_credits)


class StoredListen(BaseModel):
    """Queued listen. Two entries are the same listen if item and timestamp match."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    item_id: str
    listened_at: int
    metadata: Optional[AudioItemMetadata] = None

    @property
    def key(self) -> tuple[str, int]:
        return self.item_id, self.listened_at

    @property
    def has_recording_mbid(self) -> bool:
        return bool(self.metadata and self.metadata.recording_mbid)


# ── Accounts ────────────────────────────────────────────────────────────────


class Account(BaseModel):
    user_id: str
    api_token: str = ""          # base64-encoded
    user_name: Optional[str] = None
    is_listen_submit_enabled: bool = True
    is_strict_mode_enabled: bool = False
    is_favorites_sync_enabled: bool = False

    @property
    def plaintext_api_token(self) -> str:
        return base64.b64decode(self.api_token).decode("utf-8")

    @staticmethod
    def encode_token(plaintext: str) -> str:
        return base64.b64encode(plaintext.encode("utf-8")).decode("ascii")


@dataclass
class ValidatedToken:
    is_valid: bool = False
    reason: Optional[str] = None
    user_name: Optional[str] = None


# ── Library items ───────────────────────────────────────────────────────────


@dataclass
class AudioItem:
    id: str
    name: str
    artists: list[str] = field(default_factory=list)
    album: Optional[str] = None
    duration_ms: Optional[int] = None
    track_number: Optional[int] = None
    tags: list[str] = field(default_factory=list)
    media_type: str = "Audio"
    is_favorite: bool = False
    recording_mbid: Optional[str] = None
    track_mbid: Optional[str] = None
    release_mbid: Optional[str] = None
    release_group_mbid: Optional[str] = None
    artist_mbids: list[str] = field(default_factory=list)

    @property
    def is_audio(self) -> bool:
        return self.media_type == "Audio"

    @property
    def artist_names(self) -> list[str]:
        # Stop at the first empty name, later ones are padding from the tagger.
        names = []
        for name in self.artists:
            if not name:
                break
            names.append(name)
        return names

    @property
    def has_basic_metadata(self) -> bool:
        return bool(self.artist_names) and bool(self.name and self.name.strip())

    @property
    def display_name(self) -> str:
        return f"{', '.join(self.artist_names)} - {self.name}"

    def as_listen(
        self,
        listened_at: Optional[int] = None,
        metadata: Optional[AudioItemMetadata] = None,
        *,
        client_name: Optional[str] = None,
        client_version: Optional[str] = None,
    ) -> Listen:
        artist_name = ", ".join(self.artist_names)
        if metadata and metadata.full_credit_string:
            artist_name = metadata.full_credit_string

        recording_mbid = self.recording_mbid
        if not recording_mbid and metadata and metadata.recording_mbid:
            recording_mbid = metadata.recording_mbid

        return Listen(
            listened_at=listened_at,
            track_metadata=TrackMetadata(
                artist_name=artist_name,
                track_name=self.name,
                release_name=self.album,
                additional_info=AdditionalInfo(
                    artist_mbids=self.artist_mbids or None,
                    release_group_mbid=self.release_group_mbid,
                    release_mbid=self.release_mbid,
                    recording_mbid=recording_mbid,
                    track_mbid=self.track_mbid,
                    track_number=self.track_number,
                    isrc=metadata.isrcs[0] if metadata and metadata.isrcs else None,
                    tags=self.tags or None,
                    duration_ms=self.duration_ms,
                    media_player=client_name,
                    submission_client=client_name,
                    submission_client_version=client_version,
                ),
            ),
        )

    def as_stored_listen(
        self, listened_at: int, metadata: Optional[AudioItemMetadata] = None
    ) -> StoredListen:
        return StoredListen(item_id=self.id, listened_at=listened_at, metadata=metadata)
