"""
Media upload pipeline for combination images.

Three remote steps (staged target, direct upload, file registration) followed
by polling until the file exposes a resolvable URL::

    PENDING -> STAGED -> TRANSFERRED -> REGISTERING -> READY
                                                    \\-> FAILED

Any step can move the job to FAILED. Polling is bounded by ``max_polls`` and
paced by a ``Backoff``; ``sleep`` is injectable so tests never wait.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from services.errors import MediaUploadError
from services.shopify_admin import ShopifyAdminError, user_error_messages
from settings import MEDIA_POLL_INTERVAL_SECONDS, MEDIA_POLL_MAX_ATTEMPTS

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

STAGED_UPLOADS_CREATE_MUTATION = """
mutation StagedUploadsCreate($input: [StagedUploadInput!]!) {
  stagedUploadsCreate(input: $input) {
    stagedTargets {
      url
      resourceUrl
      parameters { name value }
    }
    userErrors { field message }
  }
}
"""

FILE_CREATE_MUTATION = """
mutation FileCreate($files: [FileCreateInput!]!) {
  fileCreate(files: $files) {
    files {
      id
      fileStatus
      fileErrors { code message }
      preview { image { url } }
    }
    userErrors { field message }
  }
}
"""

FILE_STATUS_QUERY = """
query GetFile($id: ID!) {
  node(id: $id) {
    ... on MediaImage {
      id
      fileStatus
      image { url }
    }
  }
}
"""

_IMAGE_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


def sniff_mime_type(content: bytes, default: str = "image/png") -> str:
    for signature, mime_type in _IMAGE_SIGNATURES:
        if content.startswith(signature):
            return mime_type
    if content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "image/webp"
    return default


class UploadState(str, Enum):
    PENDING = "PENDING"
    STAGED = "STAGED"
    TRANSFERRED = "TRANSFERRED"
    REGISTERING = "REGISTERING"
    READY = "READY"
    FAILED = "FAILED"


_TRANSITIONS = {
    UploadState.PENDING: {UploadState.STAGED, UploadState.FAILED},
    UploadState.STAGED: {UploadState.TRANSFERRED, UploadState.FAILED},
    UploadState.TRANSFERRED: {UploadState.REGISTERING, UploadState.FAILED},
    UploadState.REGISTERING: {UploadState.READY, UploadState.FAILED},
    UploadState.READY: set(),
    UploadState.FAILED: set(),
}


class Backoff:
    def delay(self, attempt: int) -> float:
        raise NotImplementedError


class FixedBackoff(Backoff):
    def __init__(self, interval: float = MEDIA_POLL_INTERVAL_SECONDS):
        self.interval = interval

    def delay(self, attempt: int) -> float:
        return self.interval


class ExponentialBackoff(Backoff):
    def __init__(self, base: float = 0.5, factor: float = 2.0, max_delay: float = 8.0):
        self.base = base
        self.factor = factor
        self.max_delay = max_delay

    def delay(self, attempt: int) -> float:
        return min(self.base * (self.factor ** attempt), self.max_delay)


@dataclass
class UploadedImage:
    image_id: str
    image_url: str


@dataclass
class UploadJob:
    filename: str
    mime_type: str
    size: int
    state: UploadState = UploadState.PENDING
    history: List[UploadState] = field(default_factory=lambda: [UploadState.PENDING])
    resource_url: Optional[str] = None
    file_id: Optional[str] = None
    image_url: Optional[str] = None
    polls: int = 0
    error: Optional[str] = None

    def advance(self, new_state: UploadState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise ValueError(f"Illegal upload transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)


class MediaUploadPipeline:
    def __init__(
        self,
        admin,
        sleep: SleepFn = asyncio.sleep,
        backoff: Optional[Backoff] = None,
        max_polls: int = MEDIA_POLL_MAX_ATTEMPTS,
    ):
        self.admin = admin
        self.sleep = sleep
        self.backoff = backoff or FixedBackoff()
        self.max_polls = max_polls
        self.last_job: Optional[UploadJob] = None

    async def upload(
        self,
        content: bytes,
        filename: str = "combination-image.png",
        mime_type: Optional[str] = None,
    ) -> UploadedImage:
        """Run the whole pipeline; raises ``MediaUploadError`` unless READY."""
        if not content:
            raise MediaUploadError("Image content is empty")

        job = UploadJob(filename=filename, mime_type=mime_type or sniff_mime_type(content), size=len(content))
        self.last_job = job
        try:
            await self._stage_and_transfer(job, content)
            await self._register(job)
            await self._poll_until_ready(job)
        except MediaUploadError as exc:
            self._fail(job, exc.message)
            raise
        except ShopifyAdminError as exc:
            failed_in = job.state
            self._fail(job, str(exc))
            raise MediaUploadError(f"Image upload failed: {exc}", details={"state": failed_in.value}) from exc

        logger.info("[media_upload] %s ready as %s after %d polls", filename, job.file_id, job.polls)
        return UploadedImage(image_id=job.file_id or "", image_url=job.image_url or "")

    def _fail(self, job: UploadJob, reason: str) -> None:
        job.error = reason
        if job.state is not UploadState.FAILED:
            job.advance(UploadState.FAILED)
        logger.warning("[media_upload] %s failed: %s", job.filename, reason)

    async def _stage_and_transfer(self, job: UploadJob, content: bytes) -> None:
        variables = {
            "input": [
                {
                    "resource": "FILE",
                    "filename": job.filename,
                    "mimeType": job.mime_type,
                    "fileSize": str(job.size),
                    "httpMethod": "POST",
                }
            ]
        }
        data = await self.admin.graphql(STAGED_UPLOADS_CREATE_MUTATION, variables)
        payload = data.get("stagedUploadsCreate") or {}
        messages = user_error_messages(payload)
        if messages:
            raise MediaUploadError(
                f"Failed to create staged upload: {', '.join(messages)}",
                details={"state": job.state.value, "errors": messages},
            )
        targets = payload.get("stagedTargets") or []
        if not targets:
            raise MediaUploadError("No staged target returned", details={"state": job.state.value})
        target = targets[0]
        job.resource_url = target.get("resourceUrl")
        job.advance(UploadState.STAGED)

        await self.admin.upload_staged_file(
            target["url"], target.get("parameters") or [], content, job.filename, job.mime_type
        )
        job.advance(UploadState.TRANSFERRED)

    async def _register(self, job: UploadJob) -> None:
        variables = {"files": [{"originalSource": job.resource_url, "contentType": "IMAGE"}]}
        data = await self.admin.graphql(FILE_CREATE_MUTATION, variables)
        payload = data.get("fileCreate") or {}
        messages = user_error_messages(payload)
        if messages:
            raise MediaUploadError(
                f"Failed to create file: {', '.join(messages)}",
                details={"state": job.state.value, "errors": messages},
            )
        files = payload.get("files") or []
        if not files:
            raise MediaUploadError("No file created", details={"state": job.state.value})
        created = files[0]
        job.file_id = created["id"]
        job.advance(UploadState.REGISTERING)
        self._absorb_file_state(job, created)

    def _absorb_file_state(self, job: UploadJob, file_node: Dict[str, Any]) -> None:
        if file_node.get("fileStatus") == "FAILED":
            errors = [err.get("message", "") for err in file_node.get("fileErrors") or []]
            raise MediaUploadError(
                "Shopify could not process the image",
                details={"state": job.state.value, "errors": errors},
            )
        url = ((file_node.get("image") or (file_node.get("preview") or {}).get("image")) or {}).get("url")
        if url:
            job.image_url = url

    async def _poll_until_ready(self, job: UploadJob) -> None:
        while not job.image_url:
            if job.polls >= self.max_polls:
                raise MediaUploadError(
                    "Failed to get image URL after upload",
                    details={"state": job.state.value, "polls": job.polls},
                )
            await self.sleep(self.backoff.delay(job.polls))
            job.polls += 1
            data = await self.admin.graphql(FILE_STATUS_QUERY, {"id": job.file_id})
            self._absorb_file_state(job, data.get("node") or {})
        job.advance(UploadState.READY)
