from __future__ import annotations

from typing import Any, Dict, Optional


class SiiviError(Exception):
    """Base class for everything this package raises on purpose."""


class RemoteError(SiiviError):
    """A call to the remote data store or a remote function failed.

    For remote functions `status` and `payload` carry what the function
    answered with, when it answered at all.
    """

    def __init__(self, message: str, table: Optional[str] = None, status: Optional[int] = None,
                 payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.table = table
        self.status = status
        self.payload = payload or {}


class SessionCreationError(SiiviError):
    pass


class MessageLimitError(SiiviError):
    """The guest session has used up its message quota."""


class GatewayError(SiiviError):
    """LLM gateway failure.

    `code` is one of RATE_LIMITED / PAYMENT_REQUIRED / UPSTREAM; the first two
    are meant to be shown to the user as-is, never retried.
    """

    RATE_LIMITED = "rate_limited"
    PAYMENT_REQUIRED = "payment_required"
    UPSTREAM = "upstream_error"

    def __init__(self, code: str, message: str, status: int = 500) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status


class FunctionError(SiiviError):
    """An edge function rejected its input or failed while running."""

    def __init__(self, status: int, message: str, payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.payload = payload or {}


class PipelineError(SiiviError):
    """A send-pipeline stage failed. Stages before `stage` have completed."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.cause = cause

    @property
    def code(self) -> Optional[str]:
        if isinstance(self.cause, GatewayError):
            return self.cause.code
        if isinstance(self.cause, RemoteError):
            return self.cause.payload.get("code")
        return None
