from __future__ import annotations

from collections.abc import Mapping
import errno
import socket
from typing import Final


TRANSIENT_NETWORK_CODES: Final[frozenset[str]] = frozenset(
    {
        "ECONNRESET",
        "ETIMEDOUT",
        "ECONNREFUSED",
        "ENOTFOUND",
        "EAI_AGAIN",
        "EPIPE",
    }
)

_TRANSIENT_ERRNOS: Final[frozenset[int]] = frozenset(
    {
        errno.ECONNRESET,
        errno.ETIMEDOUT,
        errno.ECONNREFUSED,
        errno.EPIPE,
    }
)
_TRANSIENT_GAI_ERRNOS: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(socket, "EAI_AGAIN", None),
        getattr(socket, "EAI_NONAME", None),
    )
    if code is not None
)


def is_transient_error(error: object) -> bool:
    """Return True for network-level or server-side failures worth retrying.

    Recognizes a string ``code`` from ``TRANSIENT_NETWORK_CODES``, socket
    errors with the equivalent errno, and HTTP 429 or any 5xx status. Auth and
    validation denials (401/403/404/422) are permanent. Never raises.
    """
    code = _field(error, "code")
    if isinstance(code, str) and code in TRANSIENT_NETWORK_CODES:
        return True
    if _is_transient_os_error(error):
        return True
    status = error_status(error)
    return status is not None and (status == 429 or status >= 500)


def error_status(error: object) -> int | None:
    for key in ("status", "status_code"):
        value = _field(error, key)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
    return None


def _is_transient_os_error(error: object) -> bool:
    if isinstance(error, socket.gaierror):
        return error.errno in _TRANSIENT_GAI_ERRNOS
    if isinstance(error, OSError):
        return error.errno in _TRANSIENT_ERRNOS
    return False


def _field(error: object, key: str) -> object:
    if error is None or isinstance(error, str | bytes | int | float | bool):
        return None
    if isinstance(error, Mapping):
        try:
            return error.get(key)
        except Exception:  # noqa: BLE001
            return None
    try:
        return getattr(error, key, None)
    except Exception:  # noqa: BLE001
        return None
