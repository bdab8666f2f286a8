"""Error taxonomy for OmniBridge services."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException


@dataclass(frozen=True)
class OmniBridgeError(Exception):
    code: str
    detail: str
    status_code: int = 400
    retryable: bool = False

    def __str__(self) -> str:
        return f"{self.code}: {self.detail}"

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.detail)


class OmniBridgeValidationError(OmniBridgeError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=400, retryable=False)


class OmniBridgeNotFoundError(OmniBridgeError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=404, retryable=False)


class OmniBridgeAuthError(OmniBridgeError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=401, retryable=False)


class OmniBridgeRateLimitError(OmniBridgeError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=429, retryable=True)


class OmniBridgeTransientError(OmniBridgeError):
    def __init__(self, code: str, detail: str, status_code: int = 503):
        super().__init__(code=code, detail=detail, status_code=status_code, retryable=True)


class OmniBridgeConfigError(OmniBridgeError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=400, retryable=False)


class OmniBridgeExternalError(OmniBridgeError):
    def __init__(self, code: str, detail: str, status_code: int = 502, retryable: bool = True):
        super().__init__(code=code, detail=detail, status_code=status_code, retryable=retryable)


class TransientOutboundError(RuntimeError):
    """Send failed in a way that may succeed later."""


class PermanentOutboundError(RuntimeError):
    """Send failed and retrying will not help."""


def as_http_exception(exc: Exception) -> HTTPException:
    if isinstance(exc, OmniBridgeError):
        return exc.to_http_exception()
    if isinstance(exc, HTTPException):
        return exc
    return HTTPException(status_code=500, detail=str(exc) or "OmniBridge error")
