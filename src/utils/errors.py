"""
Scan error taxonomy, classification and the persisted error format.

Every failure that reaches a caller is reduced to one of the fixed
``ErrorKind`` codes plus a free-text detail.  The stored form is a
single string ``"<code>: <detail>"``.
"""

from __future__ import annotations

import asyncio
from typing import Literal, get_args

import pydantic

ErrorKind = Literal[
    "blocked_url",
    "dns_failed",
    "navigation_timeout",
    "browser_failed",
    "unknown",
]

ERROR_KINDS: tuple[str, ...] = get_args(ErrorKind)

# Codes written by older workers, mapped onto the current taxonomy.
_LEGACY_CODES: dict[str, ErrorKind] = {
    "playwright_failed": "browser_failed",
}


class ScanErrorInfo(pydantic.BaseModel):
    """A classified failure: taxonomy code plus human-readable detail."""

    code: ErrorKind
    detail: str


class ScanError(Exception):
    """Failure carrying a machine-readable taxonomy code."""

    def __init__(self, code: ErrorKind, detail: str) -> None:
        super().__init__(detail)
        self.code: ErrorKind = code
        self.detail = detail

    def __repr__(self) -> str:
        return f"ScanError({self.code!r}, {self.detail!r})"


def get_error_message(error: BaseException | object) -> str:
    """
    Safely extract an error message from an unknown error type.
    """
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return "Unknown error"


def classify(error: BaseException) -> ScanErrorInfo:
    """Reduce any exception to a taxonomy code and detail.

    ``ScanError`` keeps its own code.  Other exceptions are
    matched by type first (timeouts) and then by message
    fragments, in taxonomy priority order.
    """
    if isinstance(error, ScanError):
        return ScanErrorInfo(code=error.code, detail=error.detail)

    msg = get_error_message(error)
    lowered = msg.lower()

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ScanErrorInfo(code="navigation_timeout", detail=msg)
    if "blocked" in lowered:
        return ScanErrorInfo(code="blocked_url", detail=msg)
    if (
        "enotfound" in lowered
        or "err_name_not_resolved" in lowered
        or "econnrefused" in lowered
        or "dns" in lowered
    ):
        return ScanErrorInfo(code="dns_failed", detail=msg)
    if "timeout" in lowered:
        return ScanErrorInfo(code="navigation_timeout", detail=msg)

    return ScanErrorInfo(code="unknown", detail=msg)


def encode_error(code: ErrorKind, detail: str) -> str:
    """Format an error for storage on the job record."""
    return f"{code}: {detail}"


def decode_error(stored: str | None) -> ScanErrorInfo:
    """Parse a stored error string back into code and detail.

    Splits on the first colon.  A missing or unrecognised prefix
    yields ``unknown`` with the whole text as detail.
    """
    if not stored:
        return ScanErrorInfo(code="unknown", detail="")

    prefix, sep, rest = stored.partition(":")
    if not sep:
        return ScanErrorInfo(code="unknown", detail=stored)

    prefix = prefix.strip()
    if prefix in ERROR_KINDS:
        return ScanErrorInfo(code=prefix, detail=rest.removeprefix(" "))  # type: ignore[arg-type]
    if prefix in _LEGACY_CODES:
        return ScanErrorInfo(code=_LEGACY_CODES[prefix], detail=rest.removeprefix(" "))
    return ScanErrorInfo(code="unknown", detail=stored)
