from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_db, require_user
from storefront.core.identity import UserIdentity
from storefront.services import orders

router = APIRouter()

@router.get('/my-orders')
def my_orders(user: UserIdentity = Depends(require_user), db: Session = Depends(get_db)):
    rows = orders.list_user_orders(db, user.user_id)
    return {'success': True, 'message': 'Orders retrieved successfully', 'data': [orders.order_to_dict(o) for o in rows]}
