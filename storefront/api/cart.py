from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_db, get_resolution, require_user
from storefront.api.schemas import CartClaim, CartItemAdd, CartItemPatch, CartLineRead, CartValidateRequest
from storefront.core.errors import ValidationError
from storefront.core.identity import Resolution, UserIdentity
from storefront.services import cart_merger, cart_validator
from storefront.store import cart_store

router = APIRouter()

def _line(item):
    return CartLineRead.model_validate(item).model_dump(mode='json', by_alias=True)

def _summary(items, res: Resolution) -> dict:
    last = max((i.updated_at for i in items if i.updated_at), default=None)
    data = {
        'items': [_line(i) for i in items],
        'itemCount': sum(i.quantity for i in items),
        'subtotal': sum(i.unit_price * i.quantity for i in items),
        'selectedSubtotal': sum(i.unit_price * i.quantity for i in items if i.selected),
        'lastUpdated': last.isoformat() if last else None,
    }
    if res.is_guest:
        data['sessionId'] = res.identity.session_id
    return data

@router.get('')
def get_cart(res: Resolution = Depends(get_resolution), db: Session = Depends(get_db)):
    items = cart_store.get_cart(db, res.identity)
    return {'success': True, 'message': 'Cart loaded successfully', 'data': _summary(items, res)}

@router.post('', status_code=201)
def add_item(payload: CartItemAdd, res: Resolution = Depends(get_resolution), db: Session = Depends(get_db)):
    line = cart_store.add_item(db, res.identity, payload.product_id, payload.variant_selections, payload.quantity)
    return {'success': True, 'message': 'Item added to cart', 'data': _line(line)}

@router.delete('')
def clear_cart(res: Resolution = Depends(get_resolution), db: Session = Depends(get_db)):
    cart_store.clear_cart(db, res.identity)
    return {'success': True, 'message': 'Cart cleared', 'data': None}

@router.post('/claim')
def claim_cart(payload: CartClaim, user: UserIdentity = Depends(require_user), db: Session = Depends(get_db)):
    result = cart_merger.claim(db, payload.guest_id, user.user_id)
    return {
        'success': True,
        'message': 'Guest cart claimed' if not result.noop else 'Nothing to claim',
        'data': {'merged': result.merged, 'moved': result.moved},
    }

@router.post('/validate')
def validate_cart(payload: CartValidateRequest, db: Session = Depends(get_db)):
    report = cart_validator.validate(db, payload.items)
    return {'success': True, 'message': 'Cart validated successfully', 'data': report.to_dict()}

@router.patch('/{item_id}')
def update_item(item_id: int, payload: CartItemPatch, res: Resolution = Depends(get_resolution),
                db: Session = Depends(get_db)):
    if payload.quantity is None and payload.selected is None:
        raise ValidationError('Nothing to update', {'fields': ['quantity', 'selected']})
    line = None
    if payload.quantity is not None:
        line = cart_store.update_quantity(db, res.identity, item_id, payload.quantity)
        if line is None:
            return {'success': True, 'message': 'Item removed from cart', 'data': None}
    if payload.selected is not None:
        line = cart_store.set_selected(db, res.identity, item_id, payload.selected)
    return {'success': True, 'message': 'Cart item updated', 'data': _line(line)}

@router.delete('/{item_id}')
def remove_item(item_id: int, res: Resolution = Depends(get_resolution), db: Session = Depends(get_db)):
    cart_store.remove_item(db, res.identity, item_id)
    return {'success': True, 'message': 'Item removed from cart', 'data': None}
