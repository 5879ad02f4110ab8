from __future__ import annotations
import asyncio
from typing import AsyncIterator, Callable, Literal, Union
import httpx
from pydantic import BaseModel, ValidationError
import structlog

from app.config import settings
from app.client.submission import UploadRequest
from app.schemas.media import MediaItem

log = structlog.get_logger()

FailureKind = Literal["network_error", "timeout", "server_rejected", "invalid_response", "cancelled"]
ProgressCallback = Callable[[int], None]


class Ready(BaseModel):
    item: MediaItem


class Failed(BaseModel):
    kind: FailureKind
    reason: str


Outcome = Union[Ready, Failed]


class UploadHandle:
    """
    A running upload. Exactly one outcome is produced: cancel() settles it as
    Failed(cancelled) immediately, otherwise result() waits for the transfer.
    """

    def __init__(self, request: UploadRequest, task: asyncio.Task):
        self.request = request
        self._task = task
        self._outcome: Outcome | None = None

    @property
    def done(self) -> bool:
        return self._outcome is not None

    def cancel(self) -> None:
        if self._outcome is not None:
            return
        self._settle(Failed(kind="cancelled", reason="Upload cancelled"))
        self._task.cancel()

    async def result(self) -> Outcome:
        if self._outcome is not None:
            return self._outcome
        try:
            outcome = await self._task
        except asyncio.CancelledError:
            if self._outcome is None:
                raise
            return self._outcome
        return self._settle(outcome)

    def _settle(self, outcome: Outcome) -> Outcome:
        if self._outcome is not None:
            return self._outcome
        self._outcome = outcome
        req = self.request
        if isinstance(outcome, Ready):
            if outcome.item.processing_state == "pending":
                req.mark_processing()
            else:
                req.complete()
        elif outcome.kind == "cancelled":
            req.cancel()
        else:
            req.fail(outcome.reason)
        log.info("upload_settled", media_id=req.id, state=req.state,
                 failure=None if isinstance(outcome, Ready) else outcome.kind)
        return outcome


class UploadTransport:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float | None = None,
        chunk_bytes: int | None = None,
        token: str | None = None,
        guest_name: str | None = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url or settings.api_base_url)
        self.timeout_seconds = settings.upload_timeout_seconds if timeout_seconds is None else timeout_seconds
        self.chunk_bytes = chunk_bytes or settings.upload_chunk_bytes
        self.token = token
        self.guest_name = guest_name

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "UploadTransport":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def _headers(self) -> dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {"X-Guest-Name": self.guest_name} if self.guest_name else {}

    def start(self, request: UploadRequest, on_progress: ProgressCallback | None = None) -> UploadHandle:
        """Must be called from a running event loop; returns without waiting for the transfer."""
        request.begin()
        task = asyncio.create_task(self._run(request, on_progress))
        return UploadHandle(request, task)

    async def _run(self, request: UploadRequest, on_progress: ProgressCallback | None) -> Outcome:
        try:
            return await asyncio.wait_for(self._send(request, on_progress), self.timeout_seconds)
        except asyncio.TimeoutError:
            return Failed(kind="timeout", reason=f"Upload did not finish within {self.timeout_seconds:g}s")
        except httpx.TimeoutException as e:
            return Failed(kind="timeout", reason=str(e) or type(e).__name__)
        except httpx.TransportError as e:
            log.warning("upload_network_error", media_id=request.id, error=str(e))
            return Failed(kind="network_error", reason=str(e) or type(e).__name__)

    def _progress(self, request: UploadRequest, on_progress: ProgressCallback | None, percent: float) -> None:
        if request.report_progress(percent) and on_progress is not None:
            on_progress(request.progress_percent)

    async def _send(self, request: UploadRequest, on_progress: ProgressCallback | None) -> Outcome:
        built = self._client.build_request(
            "POST",
            "/media",
            data=request.form_fields(),
            files={"file": (request.filename, request.data, request.mime_type)},
            headers=self._headers(),
        )
        body = built.read()
        total = len(body) or 1
        chunk = self.chunk_bytes
        if on_progress is not None:
            on_progress(request.progress_percent)

        async def chunks() -> AsyncIterator[bytes]:
            sent = 0
            for start in range(0, len(body), chunk):
                piece = body[start:start + chunk]
                yield piece
                sent += len(piece)
                self._progress(request, on_progress, sent * 100 / total)

        streamed = httpx.Request("POST", built.url, headers=built.headers, content=chunks())
        response = await self._client.send(streamed)
        self._progress(request, on_progress, 100)
        return self._interpret(request, response)

    def _interpret(self, request: UploadRequest, response: httpx.Response) -> Outcome:
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail")
            except (ValueError, AttributeError):
                detail = None
            reason = detail if isinstance(detail, str) else response.reason_phrase or f"HTTP {response.status_code}"
            log.info("upload_rejected", media_id=request.id, status=response.status_code, reason=reason)
            return Failed(kind="server_rejected", reason=reason)
        try:
            item = MediaItem.model_validate(response.json())
        except (ValueError, ValidationError):
            return Failed(kind="invalid_response", reason="Response body is not a media item")
        if item.id != request.id:
            return Failed(kind="invalid_response", reason=f"Server answered for {item.id}")
        return Ready(item=item)
