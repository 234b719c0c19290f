import asyncio

import pytest

from core.errors import map_exception, validate_error_type
from core.messaging.exceptions import FetchError


def test_error_taxonomy_known():
    assert validate_error_type("auth-missing") == "auth-missing"
    assert validate_error_type("config-out-of-range") == "config-out-of-range"
    assert validate_error_type("invalid-payload") == "invalid-payload"


def test_error_taxonomy_unknown():
    with pytest.raises(AssertionError):
        validate_error_type("not-a-code")


@pytest.mark.parametrize(
    "exc, code",
    [
        (ConnectionError("Authentication error"), "auth-rejected"),
        (ConnectionError("invalid token"), "auth-rejected"),
        (asyncio.TimeoutError(), "connect-timeout"),
        (OSError("One or more namespaces failed to connect"),
         "network-unreachable"),
    ],
)
def test_map_connect_errors(exc, code):
    assert map_exception(exc, "connect") == code


def test_map_fetch_and_send_errors():
    from pydantic import BaseModel, ValidationError

    class Strict(BaseModel):
        n: int

    with pytest.raises(ValidationError) as exc:
        Strict.model_validate({"n": "x"})
    assert map_exception(exc.value, "fetch") == "invalid-payload"
    assert map_exception(FetchError("x", status_code=401), "fetch") == (
        "fetch-rejected"
    )
    assert map_exception(FetchError("x"), "fetch") == "fetch-failed"
    assert map_exception(RuntimeError("x"), "send") == "send-rejected"


def test_every_mapped_code_is_in_taxonomy():
    samples = [
        (ConnectionError("auth"), "connect"),
        (TimeoutError(), "connect"),
        (OSError(), "connect"),
        (FetchError("x"), "fetch"),
        (FetchError("x", 500), "fetch"),
        (RuntimeError(), "send"),
        (RuntimeError(), "other"),
    ]
    for exc, phase in samples:
        validate_error_type(map_exception(exc, phase))
