"""
ListenBrainz service.
- ListenBrainzClient: the request gateway. One request in flight at a time,
  server errors retried with backoff, rate limits waited out.
- ListenBrainzService: per-account operations on top of the gateway.
  Gateway failures surface as ServiceError.
"""
import asyncio
import logging
from typing import Iterable, Optional, TypeVar

import aiohttp
from pydantic import BaseModel, Field, ValidationError

from scrobbler.config.settings import settings
from scrobbler.services.models import (
    Account,
    AudioItem,
    AudioItemMetadata,
    FeedbackScore,
    Listen,
    ListenType,
    ValidatedToken,
)
from scrobbler.utils.http_client import (
    GatewayError,
    InvalidResponse,
    RawResponse,
    Sleep,
    request_with_retry,
)
from scrobbler.utils.rate_limiter import comply_with_rate_limit
from scrobbler.utils.url_builder import QueryParams, build_url

logger = logging.getLogger(__name__)

API_VERSION = "1"


class ServiceError(Exception):
    pass


# ── Requests ────────────────────────────────────────────────────────────────


class ApiRequest(BaseModel):
    base_url: str = Field(default_factory=lambda: settings.LISTENBRAINZ_API_URL, exclude=True)
    api_token: Optional[str] = Field(default=None, exclude=True)

    @property
    def endpoint(self) -> str:
        raise NotImplementedError

    def query(self) -> QueryParams:
        return []

    def body(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SubmitListensRequest(ApiRequest):
    listen_type: ListenType = ListenType.PLAYING_NOW
    payload: list[Listen] = []

    @property
    def endpoint(self) -> str:
        return "submit-listens"


class RecordingFeedbackRequest(ApiRequest):
    recording_mbid: Optional[str] = None
    recording_msid: Optional[str] = None
    score: FeedbackScore = FeedbackScore.NEUTRAL

    @property
    def endpoint(self) -> str:
        return "feedback/recording-feedback"


class UserListensRequest(ApiRequest):
    user_name: str = Field(exclude=True)
    count: int = 10
    offset: Optional[int] = None

    @property
    def endpoint(self) -> str:
        return f"user/{self.user_name}/listens"

    def query(self) -> QueryParams:
        params = [("count", str(self.count))]
        if self.offset is not None:
            params.append(("offset", str(self.offset)))
        return params


class ValidateTokenRequest(ApiRequest):
    @property
    def endpoint(self) -> str:
        return "validate-token"


# ── Responses ───────────────────────────────────────────────────────────────


class ApiResponse(BaseModel):
    is_ok: bool = Field(default=False, exclude=True)
    code: Optional[int] = None
    error: Optional[str] = None


class SubmitListensResponse(ApiResponse):
    status: Optional[str] = None


class RecordingFeedbackResponse(ApiResponse):
    status: Optional[str] = None


class ValidateTokenResponse(ApiResponse):
    valid: bool = False
    message: str = ""
    user_name: Optional[str] = None


class UserListensPayload(BaseModel):
    count: int = 0
    user_id: str = ""
    listens: list[Listen] = []


class UserListensResponse(ApiResponse):
    payload: UserListensPayload = UserListensPayload()


ResponseT = TypeVar("ResponseT", bound=ApiResponse)


# ── Gateway ─────────────────────────────────────────────────────────────────


class ListenBrainzClient:
    """
    Request gateway for the ListenBrainz API.

    The whole retry sequence of a request runs under one lock: two callers
    retrying against the same rate limit window would both act on stale
    reset information.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        sleep: Sleep = asyncio.sleep,
        transport_attempts: int = settings.HTTP_RETRY_ATTEMPTS,
        backoff: float = settings.HTTP_RETRY_BACKOFF,
        rate_limit_attempts: int = settings.RATE_LIMIT_ATTEMPTS,
    ):
        self._session = session
        self._sleep = sleep
        self._transport_attempts = transport_attempts
        self._backoff = backoff
        self._rate_limit_attempts = rate_limit_attempts
        self._lock = asyncio.Lock()

    async def submit_listens(self, request: SubmitListensRequest) -> SubmitListensResponse:
        return await self._post(request, SubmitListensResponse)

    async def submit_recording_feedback(
        self, request: RecordingFeedbackRequest
    ) -> RecordingFeedbackResponse:
        return await self._post(request, RecordingFeedbackResponse)

    async def get_user_listens(self, request: UserListensRequest) -> UserListensResponse:
        return await self._get(request, UserListensResponse)

    async def validate_token(self, request: ValidateTokenRequest) -> ValidateTokenResponse:
        return await self._get(request, ValidateTokenResponse)

    async def _post(self, request: ApiRequest, response_model: type[ResponseT]) -> ResponseT:
        url = build_url(request.base_url, request.endpoint, version=API_VERSION)
        return await self._execute("POST", url, request, response_model, json_body=request.body())

    async def _get(self, request: ApiRequest, response_model: type[ResponseT]) -> ResponseT:
        url = build_url(request.base_url, request.endpoint, request.query(), version=API_VERSION)
        return await self._execute("GET", url, request, response_model)

    async def _execute(
        self,
        method: str,
        url: str,
        request: ApiRequest,
        response_model: type[ResponseT],
        json_body: Optional[dict] = None,
    ) -> ResponseT:
        headers = {}
        if request.api_token:
            headers["Authorization"] = f"token {request.api_token}"

        async def send() -> RawResponse:
            return await request_with_retry(
                self._session,
                method,
                url,
                headers=headers,
                json_body=json_body,
                attempts=self._transport_attempts,
                backoff=self._backoff,
                sleep=self._sleep,
            )

        async with self._lock:
            response = await comply_with_rate_limit(
                send, attempts=self._rate_limit_attempts, sleep=self._sleep
            )

        logger.debug("Got response", extra={"url": url, "status": response.status})
        return _parse(response, response_model)


def _parse(response: RawResponse, response_model: type[ResponseT]) -> ResponseT:
    try:
        result = response_model.model_validate(response.json())
    except ValidationError as exc:
        raise InvalidResponse(
            f"Unexpected {response_model.__name__} shape (HTTP {response.status})"
        ) from exc
    result.is_ok = response.ok
    return result


# ── Service ─────────────────────────────────────────────────────────────────


class ListenBrainzService:
    def __init__(
        self,
        client: ListenBrainzClient,
        *,
        base_url: str = settings.LISTENBRAINZ_API_URL,
        client_name: str = settings.APP_NAME,
        client_version: str = settings.APP_VERSION,
    ):
        self._client = client
        self._base_url = base_url
        self._client_name = client_name
        self._client_version = client_version

    def build_listen(
        self,
        item: AudioItem,
        listened_at: Optional[int] = None,
        metadata: Optional[AudioItemMetadata] = None,
    ) -> Listen:
        return item.as_listen(
            listened_at,
            metadata,
            client_name=self._client_name,
            client_version=self._client_version,
        )

    async def send_now_playing(
        self,
        account: Account,
        item: AudioItem,
        metadata: Optional[AudioItemMetadata] = None,
    ) -> bool:
        listen = self.build_listen(item, metadata=metadata)
        return await self._submit(account, ListenType.PLAYING_NOW, [listen], "now playing")

    async def send_listen(
        self,
        account: Account,
        item: AudioItem,
        metadata: Optional[AudioItemMetadata],
        listened_at: int,
    ) -> bool:
        listen = self.build_listen(item, listened_at, metadata)
        return await self._submit(account, ListenType.SINGLE, [listen], "listen")

    async def send_listens(self, account: Account, listens: Iterable[Listen]) -> bool:
        return await self._submit(account, ListenType.IMPORT, list(listens), "listens")

    async def send_feedback(
        self,
        account: Account,
        is_favorite: bool,
        recording_mbid: Optional[str] = None,
        recording_msid: Optional[str] = None,
    ) -> bool:
        if not recording_mbid and not recording_msid:
            raise ValueError("No recording MBID or MSID provided")

        request = RecordingFeedbackRequest(
            base_url=self._base_url,
            api_token=_plaintext_token(account),
            recording_mbid=recording_mbid or None,
            recording_msid=recording_msid or None,
            score=FeedbackScore.LOVED if is_favorite else FeedbackScore.NEUTRAL,
        )
        try:
            response = await self._client.submit_recording_feedback(request)
        except GatewayError as exc:
            raise ServiceError("Sending recording feedback failed") from exc
        return response.is_ok

    async def validate_token(self, api_token: str) -> ValidatedToken:
        request = ValidateTokenRequest(base_url=self._base_url, api_token=api_token)
        try:
            response = await self._client.validate_token(request)
        except GatewayError as exc:
            raise ServiceError("Token validation failed") from exc

        if not response.is_ok:
            return ValidatedToken()
        return ValidatedToken(
            is_valid=response.valid,
            reason=response.message,
            user_name=response.user_name,
        )

    async def get_recording_msid_by_listen_ts(self, account: Account, ts: int) -> str:
        user_name = account.user_name
        if not user_name:
            logger.debug("Username unknown, getting it via token validation")
            user_name = await self._user_name_from_token(account)

        request = UserListensRequest(
            base_url=self._base_url,
            api_token=_plaintext_token(account),
            user_name=user_name,
        )
        try:
            response = await self._client.get_user_listens(request)
        except GatewayError as exc:
            raise ServiceError("Getting user listens failed") from exc

        listen = next((x for x in response.payload.listens if x.listened_at == ts), None)
        if listen is None:
            return ""
        return listen.find_recording_msid() or ""

    async def _user_name_from_token(self, account: Account) -> str:
        token = await self.validate_token(_plaintext_token(account))
        if not token.is_valid:
            raise ServiceError("Token is not valid")
        if not token.user_name:
            raise ServiceError("No username received")
        return token.user_name

    async def _submit(
        self,
        account: Account,
        listen_type: ListenType,
        listens: list[Listen],
        what: str,
    ) -> bool:
        request = SubmitListensRequest(
            base_url=self._base_url,
            api_token=_plaintext_token(account),
            listen_type=listen_type,
            payload=listens,
        )
        try:
            response = await self._client.submit_listens(request)
        except GatewayError as exc:
            logger.debug("Exception when sending %s", what, extra={"error": str(exc)})
            raise ServiceError(f"Sending {what} failed") from exc

        if not response.is_ok:
            logger.info(
                "Server rejected %s",
                what,
                extra={"code": response.code, "error": response.error},
            )
        return response.is_ok


def _plaintext_token(account: Account) -> str:
    try:
        return account.plaintext_api_token
    except ValueError as exc:
        raise ServiceError(f"API token of account {account.user_id} cannot be decoded") from exc
