"""Client-supplied ``Idempotency-Key`` handling for checkout.

A key is claimed with ``SET NX EX``. While the first request runs the key holds
a pending marker that expires after ``IDEMPOTENCY_PENDING_TTL_SECONDS``; on
success the marker is swapped for the response, kept for
``IDEMPOTENCY_TTL_SECONDS``, so replays return it unchanged; on
failure the marker is deleted so the client can retry. Both swaps are Lua
compare-and-set scripts, so a request only ever touches its own marker.
"""
import json
import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from redis import Redis

from storefront.core.config import settings
from storefront.core.errors import ConflictError, ValidationError
from storefront.core.identity import GuestIdentity, Identity, UserIdentity

logger = structlog.get_logger(__name__)

MAX_KEY_LENGTH = 255

_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

_COMPLETE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    redis.call('SET', KEYS[1], ARGV[2], 'EX', tonumber(ARGV[3]))
    return 1
else
    return 0
end
"""


@dataclass(frozen=True)
class Claim:
    key: str
    marker: Optional[str] = None
    replay: Optional[dict] = None

    @property
    def is_replay(self) -> bool:
        return self.replay is not None


def scope_of(identity: Identity) -> str:
    if isinstance(identity, UserIdentity):
        return f'user:{identity.user_id}'
    if isinstance(identity, GuestIdentity):
        return f'guest:{identity.session_id}'
    raise ValueError('unknown identity')


class IdempotencyStore:
    def __init__(self, redis: Redis, ttl: int = settings.IDEMPOTENCY_TTL_SECONDS,
                 pending_ttl: int = settings.IDEMPOTENCY_PENDING_TTL_SECONDS, namespace: str = 'idem:checkout'):
        self.redis = redis
        self.ttl = ttl
        self.pending_ttl = pending_ttl
        self.namespace = namespace

    def _key(self, identity: Identity, client_key: str) -> str:
        return f'{self.namespace}:{scope_of(identity)}:{client_key}'

    def claim(self, identity: Identity, client_key: str) -> Claim:
        """Reserve ``client_key`` for this identity, or return the stored response of a finished call."""
        client_key = (client_key or '').strip()
        if not client_key or len(client_key) > MAX_KEY_LENGTH:
            raise ValidationError('Invalid Idempotency-Key header', {'field': 'Idempotency-Key'})

        key = self._key(identity, client_key)
        marker = json.dumps({'state': 'pending', 'token': uuid.uuid4().hex})
        if self.redis.set(key, marker, nx=True, ex=self.pending_ttl):
            return Claim(key=key, marker=marker)

        raw = self.redis.get(key)
        if raw is None:
            # expired between SET and GET; one more attempt
            if self.redis.set(key, marker, nx=True, ex=self.pending_ttl):
                return Claim(key=key, marker=marker)
            raw = self.redis.get(key)
        stored = json.loads(raw) if raw else {}
        if stored.get('state') == 'done':
            logger.info('idempotent_replay', key=key)
            return Claim(key=key, replay=stored.get('response'))
        raise ConflictError('A request with this Idempotency-Key is still in progress')

    def complete(self, claim: Claim, response: dict) -> bool:
        done = json.dumps({'state': 'done', 'response': response})
        return bool(self.redis.eval(_COMPLETE_LUA, 1, claim.key, claim.marker, done, self.ttl))

    def release(self, claim: Claim) -> bool:
        released = bool(self.redis.eval(_RELEASE_LUA, 1, claim.key, claim.marker))
        if released:
            logger.info('idempotency_key_released', key=claim.key)
        return released
