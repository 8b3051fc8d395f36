from __future__ import annotations

import json
import logging
import os
import pathlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Optional

import httpx

from app.errors import SessionError, TransferError
from app.models.domain import UploadMetadata

DEFAULT_UPLOAD_ENDPOINT = (
    "https://www.googleapis.com/upload/youtube/v3/videos?uploadType=resumable&part=snippet,status"
)
SUCCESS_STATUSES = (200, 201)


class UploadState(str, Enum):
    SESSION_INIT = "session_init"
    TRANSFERRING = "transferring"
    DONE = "done"
    FAILED = "failed"


@dataclass
class UploadSession:
    location: str
    state: UploadState = UploadState.SESSION_INIT


class ResumableUploadClient:
    """Two-phase upload: negotiate a session location, then PUT the whole file to it.

    Sessions are single use. There is no byte-range resumption; a failed
    transfer needs a fresh session.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_UPLOAD_ENDPOINT,
        timeout: float = 600.0,
        connect_timeout: float = 10.0,
        chunk_size: int = 1024 * 1024,
        transport: httpx.BaseTransport | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = httpx.Timeout(timeout, connect=min(connect_timeout, timeout))
        self.chunk_size = chunk_size
        self._transport = transport
        self.log = logger or logging.getLogger(__name__)

    def init_session(self, access_token: str, metadata: UploadMetadata) -> UploadSession:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json; charset=UTF-8",
        }
        try:
            with self._client() as client:
                response = client.post(self.endpoint, headers=headers, json=metadata.to_platform_payload())
        except httpx.HTTPError as exc:
            raise SessionError(f"resumable init failed: {exc}") from exc
        if response.status_code not in SUCCESS_STATUSES:
            raise SessionError(
                f"resumable init failed: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        location = response.headers.get("location")
        if not location:
            raise SessionError("no upload URL returned", status_code=response.status_code, body=response.text)
        self.log.info("upload session negotiated", extra={"title": metadata.title})
        return UploadSession(location=location)

    def transfer(self, session: UploadSession, file_path: str | os.PathLike) -> dict[str, Any]:
        if session.state is not UploadState.SESSION_INIT:
            raise SessionError(f"upload session already {session.state.value}")
        path = pathlib.Path(file_path)
        session.state = UploadState.TRANSFERRING
        try:
            size = path.stat().st_size
            headers = {
                "Content-Type": "video/mp4",
                "Content-Length": str(size),
            }
            with self._client() as client:
                response = client.put(session.location, headers=headers, content=self._iter_file(path))
        except (httpx.HTTPError, OSError) as exc:
            session.state = UploadState.FAILED
            raise TransferError(f"upload failed: {exc}") from exc
        text = response.text
        if response.status_code not in SUCCESS_STATUSES:
            session.state = UploadState.FAILED
            raise TransferError(
                f"upload failed: {response.status_code}",
                status_code=response.status_code,
                body=text,
            )
        session.state = UploadState.DONE
        self.log.info("upload transfer completed", extra={"bytes": size, "status_code": response.status_code})
        return parse_result(text)

    def upload(self, access_token: str, metadata: UploadMetadata, file_path: str | os.PathLike) -> dict[str, Any]:
        session = self.init_session(access_token, metadata)
        return self.transfer(session, file_path)

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport)

    def _iter_file(self, path: pathlib.Path) -> Iterator[bytes]:
        with open(path, "rb") as f:
            while True:
                chunk = f.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk


def parse_result(text: str) -> dict[str, Any]:
    try:
        payload = json.loads(text)
    except ValueError:
        return {"raw": text}
    if isinstance(payload, dict):
        return payload
    return {"result": payload}
