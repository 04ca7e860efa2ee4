"""
Tests for the framework-independent authorization gate.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import ORIGIN
from protected_routes.gate import AuthorizationError, AuthorizationGate, extract_bearer_token


@pytest.mark.parametrize(
    "header,expected",
    [
        ("Bearer abc.def.ghi", "abc.def.ghi"),
        ("Bearer  padded ", "padded"),
        ("Bearer ", None),
        ("Bearer", None),
        ("bearer abc", None),
        ("Basic dXNlcjpwYXNz", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_bearer_token(header, expected):
    assert extract_bearer_token(header) == expected


def _gate(options, result=True):
    validator = AsyncMock()
    if isinstance(result, Exception):
        validator.validate.side_effect = result
    else:
        validator.validate.return_value = result
    return AuthorizationGate(options, validator), validator


def _authorize(gate, header, path="/protected/123", scopes=()):
    return asyncio.run(gate.authorize(header, path, ORIGIN + path, scopes))


def test_valid_token_passes(options):
    gate, validator = _gate(options, True)
    assert _authorize(gate, "Bearer good", scopes=["api.read"]) is None
    validator.validate.assert_awaited_once_with("good", ORIGIN + "/protected/123", ("api.read",))


def test_missing_token_rejected_without_validation(options):
    gate, validator = _gate(options, True)
    error = _authorize(gate, None)
    assert isinstance(error, AuthorizationError)
    assert error.status_code == 401
    assert error.code == "UNAUTHORIZED"
    validator.validate.assert_not_awaited()


def test_lowercase_scheme_treated_as_missing(options):
    gate, validator = _gate(options, True)
    assert _authorize(gate, "bearer good") is not None
    validator.validate.assert_not_awaited()


def test_invalid_token_rejected_with_discovery_hint(options):
    gate, _ = _gate(options, False)
    error = _authorize(gate, "Bearer bad")
    assert error.resource_metadata_url == ORIGIN + "/.well-known/oauth-protected-resource/protected/123"
    assert error.www_authenticate == (
        'Bearer resource_metadata="https://api.example.com/.well-known/oauth-protected-resource/protected/123"'
    )


def test_root_path_hint_has_no_suffix(options):
    gate, _ = _gate(options, False)
    error = _authorize(gate, "Bearer bad", path="/")
    assert error.resource_metadata_url == ORIGIN + "/.well-known/oauth-protected-resource"


def test_raising_validator_is_a_rejection(options):
    gate, _ = _gate(options, RuntimeError("boom"))
    assert isinstance(_authorize(gate, "Bearer x"), AuthorizationError)


def test_rejection_body_is_uniform(options):
    gate, _ = _gate(options, False)
    assert _authorize(gate, "Bearer x").to_dict() == _authorize(gate, None).to_dict() == {
        "code": "UNAUTHORIZED",
        "error": "Unauthorized",
        "message": "Unauthorized",
    }
