from passlib.context import CryptContext
from datetime import datetime, timedelta, timezone
import jwt, re, secrets, string
from typing import Optional, Tuple
from storefront.core.config import settings

pwd_ctx = CryptContext(schemes=['bcrypt'], deprecated='auto')

_UUID_RE = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.IGNORECASE)
_PASSWORD_CHARS = string.ascii_letters + string.digits + '!@#$%^&*'

def hash_password(p: str) -> str: return pwd_ctx.hash(p)

def verify_password(p: str, h: str) -> bool: return pwd_ctx.verify(p, h)

def now_utc() -> datetime: return datetime.now(timezone.utc).replace(tzinfo=None)

def generate_secure_password(length: int = 16) -> str:
    return ''.join(secrets.choice(_PASSWORD_CHARS) for _ in range(length))

def generate_session_token() -> str:
    # 128 bits, URL-safe, never UUID-shaped
    return secrets.token_urlsafe(16)

def is_legacy_session_token(value: str) -> bool:
    return bool(_UUID_RE.match(value))

def create_access_token(user_id: int, email: str, role: str = 'user', expires: Optional[timedelta] = None) -> Tuple[str, datetime]:
    exp = now_utc() + (expires or timedelta(seconds=settings.ACCESS_TOKEN_EXPIRES_SECONDS))
    payload = {'sub': str(user_id), 'email': email, 'role': role, 'exp': exp, 'type': 'access'}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM), exp

def decode_token(token: str):
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
