"""
Name: File Upload Staging (pipeline stage 4)

Responsibilities:
  - Pre-create the upload staging directory (parent paths included)
  - Expose it to handlers as request.state.upload_dir
  - Reject multipart uploads over max_upload_bytes (Content-Length and streamed)
  - stage_upload(): persist an UploadFile under the staging directory

Collaborators:
  - crosscutting/config.py: UPLOAD_DIR, MAX_UPLOAD_BYTES
  - route groups (videos, users): call stage_upload() from their handlers

Constraints:
  - Staged names never escape the upload directory
"""

from __future__ import annotations

from pathlib import Path

from fastapi import UploadFile
from starlette.datastructures import Headers

from .error_responses import AppHTTPException, ErrorCode, payload_too_large
from .logger import logger
from .payload import scope_state

_COPY_CHUNK_BYTES = 1024 * 1024


def prepare_upload_dir(upload_dir: str) -> Path:
    """Create the staging directory and its parents; returns the resolved path."""
    path = Path(upload_dir).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


class FileUploadMiddleware:
    def __init__(self, app, *, upload_dir: str, max_upload_bytes: int):
        self.app = app
        self._upload_dir = prepare_upload_dir(upload_dir)
        self._max_bytes = max_upload_bytes

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        scope_state(scope)["upload_dir"] = str(self._upload_dir)

        headers = Headers(scope=scope)
        content_type = (headers.get("content-type") or "").lower()
        if not content_type.startswith("multipart/form-data"):
            await self.app(scope, receive, send)
            return

        declared = headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self._max_bytes:
            logger.warning(
                "upload too large (content-length)",
                extra={"content_length": declared, "max_bytes": self._max_bytes},
            )
            raise payload_too_large(self._max_bytes)

        await self.app(scope, self._limited_receive(receive), send)

    def _limited_receive(self, receive):
        # Chunked uploads carry no Content-Length; count what actually arrives.
        received = 0

        async def receive_limited():
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b"") or b"")
                if received > self._max_bytes:
                    logger.warning(
                        "upload too large (streaming)",
                        extra={"received_bytes": received, "max_bytes": self._max_bytes},
                    )
                    raise payload_too_large(self._max_bytes)
            return message

        return receive_limited


async def stage_upload(upload: UploadFile, upload_dir: str, relative_name: str) -> Path:
    """
    Copy an uploaded file to upload_dir/relative_name, creating parent paths.

    Raises:
        AppHTTPException(400): relative_name resolves outside upload_dir
    """
    root = Path(upload_dir).resolve()
    target = (root / relative_name).resolve()
    if not target.is_relative_to(root) or target == root:
        raise AppHTTPException(
            400, ErrorCode.VALIDATION_ERROR, f"Invalid upload name: {relative_name}"
        )

    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("wb") as out:
        while chunk := await upload.read(_COPY_CHUNK_BYTES):
            out.write(chunk)

    logger.info("upload staged", extra={"file_name": upload.filename, "target": str(target)})
    return target
