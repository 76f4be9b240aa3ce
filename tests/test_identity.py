from datetime import timedelta
from types import SimpleNamespace

import jwt
import pytest

from storefront.core.config import settings
from storefront.core.errors import AuthenticationError
from storefront.core.identity import GuestIdentity, IdentityResolver, UserIdentity
from storefront.security.utils import create_access_token, now_utc


def _request(cookies=None, headers=None):
    return SimpleNamespace(cookies=cookies or {}, headers=headers or {})


@pytest.fixture()
def resolver():
    return IdentityResolver()


def test_access_token_cookie_identifies_user(resolver):
    token, _ = create_access_token(7, "ana@example.com")
    res = resolver.resolve(_request(cookies={"token": token, "session_id": "abcdefghijklmnopqrstuv"}))
    assert res.identity == UserIdentity(user_id=7, email="ana@example.com")
    assert not res.issue_session_cookie


def test_bearer_header_is_a_fallback(resolver):
    token, _ = create_access_token(8, "b@example.com")
    res = resolver.resolve(_request(headers={"authorization": f"Bearer {token}"}))
    assert res.identity.user_id == 8


def test_existing_session_cookie_is_reused(resolver):
    res = resolver.resolve(_request(cookies={"session_id": "Zx81pQ_mwl2-n0aB4kT9cD"}))
    assert res.identity == GuestIdentity("Zx81pQ_mwl2-n0aB4kT9cD")
    assert not res.issue_session_cookie


def test_no_cookies_issues_new_session(resolver):
    res = resolver.resolve(_request())
    assert res.is_guest
    assert res.issue_session_cookie
    assert len(res.identity.session_id) >= 21


def test_legacy_uuid_session_is_replaced(resolver):
    legacy = "3f2b8c1e-9a4d-4e7f-8b6a-1c2d3e4f5a6b"
    res = resolver.resolve(_request(cookies={"session_id": legacy}))
    assert res.identity.session_id != legacy
    assert res.issue_session_cookie


def test_expired_token_falls_back_to_guest(resolver):
    token, _ = create_access_token(7, "ana@example.com", expires=timedelta(seconds=-60))
    res = resolver.resolve(_request(cookies={"token": token}))
    assert res.is_guest


def test_garbage_token_falls_back_to_guest(resolver):
    assert resolver.resolve(_request(cookies={"token": "not-a-jwt"})).is_guest


def test_refresh_type_token_is_not_an_identity(resolver):
    token = jwt.encode({"sub": "7", "type": "refresh", "exp": now_utc() + timedelta(days=1)},
                       settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    assert resolver.resolve(_request(cookies={"refreshToken": token})).is_guest


def test_forged_signature_is_rejected(resolver):
    token = jwt.encode({"sub": "7", "type": "access", "exp": now_utc() + timedelta(days=1)},
                       "someone-elses-secret", algorithm="HS256")
    with pytest.raises(AuthenticationError):
        resolver.resolve(_request(cookies={"token": token}))
