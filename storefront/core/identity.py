"""Who is acting on a request: an authenticated user or an anonymous session.

The resolved ``Identity`` is carried explicitly through the cart, checkout and
address layers; nothing downstream re-derives it from the shape of an id.
"""
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional, Union

import jwt
import structlog
from starlette.responses import Response

from storefront.core.config import settings
from storefront.core.errors import AuthenticationError
from storefront.security.utils import decode_token, generate_session_token, is_legacy_session_token

logger = structlog.get_logger(__name__)

TOKEN_COOKIES = ('token', 'accessToken', 'refreshToken')


@dataclass(frozen=True)
class UserIdentity:
    user_id: int
    email: Optional[str] = None


@dataclass(frozen=True)
class GuestIdentity:
    session_id: str


Identity = Union[UserIdentity, GuestIdentity]


@dataclass(frozen=True)
class Resolution:
    identity: Identity
    # the caller must set the session cookie when this is true
    issue_session_cookie: bool = False

    @property
    def is_guest(self) -> bool:
        return isinstance(self.identity, GuestIdentity)


class IdentityResolver:
    def __init__(self, session_cookie: str = settings.SESSION_COOKIE_NAME):
        self.session_cookie = session_cookie

    def resolve(self, request: Any) -> Resolution:
        user = self.resolve_user(request)
        if user is not None:
            return Resolution(identity=user)

        session_id = request.cookies.get(self.session_cookie)
        if session_id and not is_legacy_session_token(session_id):
            return Resolution(identity=GuestIdentity(session_id))

        if session_id:
            logger.info('legacy_session_replaced')
        return Resolution(identity=GuestIdentity(generate_session_token()), issue_session_cookie=True)

    def resolve_user(self, request: Any) -> Optional[UserIdentity]:
        """Decode the first usable access token; tampered tokens are a hard failure."""
        for token in self._candidate_tokens(request):
            try:
                claims = decode_token(token)
            except jwt.InvalidSignatureError:
                raise AuthenticationError('Invalid token signature')
            except jwt.PyJWTError as exc:
                # expired or malformed: fall through to the next carrier, then to guest
                logger.debug('token_ignored', reason=type(exc).__name__)
                continue
            if claims.get('type') != 'access':
                continue
            try:
                user_id = int(claims.get('sub'))
            except (TypeError, ValueError):
                continue
            return UserIdentity(user_id=user_id, email=claims.get('email'))
        return None

    def _candidate_tokens(self, request: Any) -> Iterator[str]:
        cookies: Mapping[str, str] = request.cookies
        for name in TOKEN_COOKIES:
            if cookies.get(name):
                yield cookies[name]
        auth = request.headers.get('authorization')
        if auth and auth.lower().startswith('bearer '):
            yield auth.split(' ', 1)[1]


def set_session_cookie(response: Response, session_id: str) -> None:
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        session_id,
        max_age=settings.SESSION_COOKIE_MAX_AGE,
        httponly=True,
        samesite='lax',
        secure=settings.COOKIE_SECURE,
        path='/',
    )


def set_auth_cookie(response: Response, token: str, max_age: int) -> None:
    response.set_cookie('token', token, max_age=max_age, httponly=True, samesite='lax',
                        secure=settings.COOKIE_SECURE, path='/')
