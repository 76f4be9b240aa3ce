from fastapi import Depends, Request, Response
from redis import Redis
from storefront.core.config import settings
from storefront.core.errors import AuthenticationError
from storefront.core.identity import Identity, IdentityResolver, Resolution, UserIdentity, set_session_cookie
from storefront.db.session import get_db  # noqa: F401  re-exported for routers
from storefront.services.idempotency import IdempotencyStore

resolver = IdentityResolver()

def get_resolution(request: Request, response: Response) -> Resolution:
    res = resolver.resolve(request)
    if res.issue_session_cookie:
        set_session_cookie(response, res.identity.session_id)
    return res

def get_identity(res: Resolution = Depends(get_resolution)) -> Identity:
    return res.identity

def require_user(request: Request) -> UserIdentity:
    user = resolver.resolve_user(request)
    if user is None:
        raise AuthenticationError('You must be signed in to use this feature')
    return user

def redis_client() -> Redis:
    return Redis.from_url(settings.REDIS_URL, decode_responses=True)

def get_idempotency_store() -> IdempotencyStore:
    return IdempotencyStore(redis_client())
