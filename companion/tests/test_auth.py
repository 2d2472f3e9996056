"""Tests for caller identity and app-check verification."""

from types import SimpleNamespace

import jwt
import pytest

from companion.core.auth import (
    create_test_app_check_token,
    create_test_jwt,
    require_user_id,
    user_id_from_token,
    verify_app_check_token,
    verify_jwt_token,
)
from companion.core.errors import AppCheckError, AuthorizationError


def _cfg(**overrides):
    values = dict(
        AUTH_JWT_SECRET="test-secret",
        AUTH_JWT_ISSUER=None,
        AUTH_JWT_AUDIENCE=None,
        APP_CHECK_ENFORCED=True,
        APP_CHECK_SECRET="test-app-check-secret",
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_require_user_id():
    assert require_user_id("u1") == "u1"
    for missing in (None, "", "  "):
        with pytest.raises(AuthorizationError):
            require_user_id(missing)


def test_valid_token_returns_subject():
    assert user_id_from_token(create_test_jwt(sub="u1")) == "u1"


def test_token_without_subject_is_rejected():
    with pytest.raises(AuthorizationError) as exc:
        user_id_from_token(create_test_jwt(sub=None))
    assert exc.value.message == "Invalid token"


def test_garbage_token_is_rejected():
    with pytest.raises(AuthorizationError):
        user_id_from_token("not-a-jwt")


def test_issuer_and_audience_are_checked():
    cfg = _cfg(AUTH_JWT_ISSUER="https://auth.example.com", AUTH_JWT_AUDIENCE="companion")
    good = create_test_jwt(issuer="https://auth.example.com", audience="companion")
    assert verify_jwt_token(good, settings_obj=cfg)["sub"] == "test_user_123"

    with pytest.raises(jwt.PyJWTError):
        verify_jwt_token(create_test_jwt(issuer="https://evil.example.com", audience="companion"), settings_obj=cfg)
    with pytest.raises(jwt.PyJWTError):
        verify_jwt_token(create_test_jwt(issuer="https://auth.example.com"), settings_obj=cfg)


def test_missing_secret_rejects_all_tokens():
    with pytest.raises(jwt.PyJWTError):
        verify_jwt_token(create_test_jwt(), settings_obj=_cfg(AUTH_JWT_SECRET=None))


def test_app_check_token():
    verify_app_check_token(create_test_app_check_token(), settings_obj=_cfg())

    with pytest.raises(AppCheckError):
        verify_app_check_token(None, settings_obj=_cfg())
    with pytest.raises(AppCheckError):
        verify_app_check_token(create_test_app_check_token(exp_minutes=-1), settings_obj=_cfg())
    with pytest.raises(AppCheckError):
        verify_app_check_token(create_test_app_check_token(), settings_obj=_cfg(APP_CHECK_SECRET=None))


def test_app_check_disabled_is_a_no_op():
    verify_app_check_token(None, settings_obj=_cfg(APP_CHECK_ENFORCED=False))
