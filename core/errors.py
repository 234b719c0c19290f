"""Central error taxonomy for the messaging core.

Failures never cross the cache/connection boundary as exceptions; they are
logged and counted under one of these codes instead.
"""
from __future__ import annotations

_ALLOWED_ERROR_TYPES = {
    # connect
    "auth-missing",
    "auth-rejected",
    "network-unreachable",
    "connect-timeout",
    # fetch
    "fetch-failed",
    "fetch-rejected",
    "invalid-payload",
    # send
    "not-connected",
    "send-rejected",
    "message-too-long",
    # infra
    "event-handler-error",
    "config-out-of-range",
    "config-invalid",
}


def validate_error_type(code: str) -> str:
    assert (
        code in _ALLOWED_ERROR_TYPES
    ), f"Unknown error_type '{code}' (not in taxonomy)"
    return code


def map_exception(e: Exception, phase: str) -> str:
    name = e.__class__.__name__.lower()
    msg = str(e).lower()
    if phase == "connect":
        if any(k in msg for k in ("token", "auth", "unauthorized")):
            return "auth-rejected"
        if "timeout" in name or "timed out" in msg or "timeout" in msg:
            return "connect-timeout"
        return "network-unreachable"
    if phase == "fetch":
        if "validation" in name:
            return "invalid-payload"
        if getattr(e, "status_code", None) is not None:
            return "fetch-rejected"
        return "fetch-failed"
    if phase == "send":
        return "send-rejected"
    return "event-handler-error"


__all__ = ["validate_error_type", "map_exception"]
