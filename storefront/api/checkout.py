from datetime import timedelta
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Header, Request, Response
from sqlalchemy.orm import Session

from storefront.api.deps import get_db, get_idempotency_store, require_user
from storefront.api.schemas import AuthenticatedCheckout, GuestCheckout
from storefront.core.config import settings
from storefront.core.errors import ValidationError
from storefront.core.identity import GuestIdentity, Identity, UserIdentity, set_auth_cookie
from storefront.security.utils import create_access_token, is_legacy_session_token
from storefront.services import checkout
from storefront.services.idempotency import IdempotencyStore

router = APIRouter()

def _idempotent(store: IdempotencyStore, identity: Identity, key: Optional[str], run: Callable[[], dict]) -> dict:
    if key is None:
        return run()
    claim = store.claim(identity, key)
    if claim.is_replay:
        return claim.replay
    try:
        data = run()
    except Exception:
        store.release(claim)
        raise
    store.complete(claim, data)
    return data

@router.post('/authenticated', status_code=201)
def checkout_authenticated(payload: AuthenticatedCheckout,
                           user: UserIdentity = Depends(require_user),
                           db: Session = Depends(get_db),
                           store: IdempotencyStore = Depends(get_idempotency_store),
                           idempotency_key: Optional[str] = Header(default=None, alias='Idempotency-Key')):
    def run() -> dict:
        return checkout.checkout_authenticated(db, user.user_id, payload.address_id).unwrap().to_dict()

    data = _idempotent(store, user, idempotency_key, run)
    return {'success': True, 'message': 'Order placed', 'data': data}

@router.post('/guest', status_code=201)
def checkout_guest(payload: GuestCheckout, request: Request, response: Response,
                   db: Session = Depends(get_db),
                   store: IdempotencyStore = Depends(get_idempotency_store),
                   idempotency_key: Optional[str] = Header(default=None, alias='Idempotency-Key')):
    session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not session_id or is_legacy_session_token(session_id):
        raise ValidationError('Session not found')

    def run() -> dict:
        contact = checkout.GuestContact(full_name=payload.full_name, email=payload.email, phone=payload.phone)
        receipt = checkout.checkout_guest(db, contact, payload.address_fields(), session_id).unwrap()
        expires = timedelta(days=settings.GUEST_TOKEN_EXPIRES_DAYS)
        token, _ = create_access_token(receipt.user_id, str(payload.email).lower(), role='user', expires=expires)
        set_auth_cookie(response, token, max_age=int(expires.total_seconds()))
        return receipt.to_dict()

    data = _idempotent(store, GuestIdentity(session_id), idempotency_key, run)
    return {'success': True, 'message': 'Order placed', 'data': data}
