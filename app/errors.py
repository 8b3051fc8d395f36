from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base error carrying a stable machine-readable code and a diagnostic payload."""

    code = "internal_error"

    def __init__(self, message: str, detail: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail if detail is not None else message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.detail}


class ValidationError(ServiceError):
    code = "validation_failed"


class WorkspaceError(ServiceError):
    code = "workspace_failed"


class DownloadError(ServiceError):
    code = "download_failed"

    def __init__(self, message: str, url: str, status_code: int | None = None, detail: Any = None) -> None:
        super().__init__(message, detail)
        self.url = url
        self.status_code = status_code


class TranscodeError(ServiceError):
    code = "transcode_failed"

    def __init__(self, message: str, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message, stderr or message)
        self.returncode = returncode
        self.stderr = stderr


class AssemblyError(ServiceError):
    code = "assembly_failed"

    def __init__(self, stage: str, cause: ServiceError) -> None:
        super().__init__(f"assembly failed during {stage}: {cause.message}", cause.detail)
        self.stage = stage
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "stage": self.stage, "detail": self.detail}


class UploadError(ServiceError):
    code = "upload_failed"


class SessionError(UploadError):
    code = "upload_session_failed"

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message, f"{message}: {body}" if body else message)
        self.status_code = status_code
        self.body = body


class TransferError(UploadError):
    code = "upload_transfer_failed"

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message, f"{message}: {body}" if body else message)
        self.status_code = status_code
        self.body = body
