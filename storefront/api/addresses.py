from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_db, require_user
from storefront.api.schemas import AddressCreate, AddressRead, AddressUpdate
from storefront.core.errors import NotFoundError
from storefront.core.identity import UserIdentity
from storefront.services import address_manager

router = APIRouter()

def _read(address):
    return AddressRead.model_validate(address).model_dump(mode='json', by_alias=True)

@router.get('')
def list_addresses(user: UserIdentity = Depends(require_user), db: Session = Depends(get_db)):
    addresses = address_manager.list_addresses(db, user.user_id)
    return {'success': True, 'message': 'Addresses retrieved successfully', 'data': [_read(a) for a in addresses]}

@router.post('', status_code=201)
def create_address(payload: AddressCreate, user: UserIdentity = Depends(require_user), db: Session = Depends(get_db)):
    address = address_manager.create(db, user.user_id, payload.model_dump(exclude_none=True)).unwrap()
    return {'success': True, 'message': 'Address created successfully', 'data': _read(address)}

@router.get('/{address_id}')
def get_address(address_id: int, user: UserIdentity = Depends(require_user), db: Session = Depends(get_db)):
    address = address_manager.get_address(db, address_id, user.user_id)
    if address is None:
        raise NotFoundError('Address not found')
    return {'success': True, 'message': 'Address retrieved successfully', 'data': _read(address)}

@router.patch('/{address_id}')
def update_address(address_id: int, payload: AddressUpdate, user: UserIdentity = Depends(require_user),
                   db: Session = Depends(get_db)):
    data = payload.model_dump(exclude_unset=True, exclude_none=True)
    address = address_manager.update_address(db, address_id, user.user_id, data).unwrap()
    if address is None:
        raise NotFoundError('Address not found')
    return {'success': True, 'message': 'Address updated successfully', 'data': _read(address)}

@router.delete('/{address_id}')
def delete_address(address_id: int, user: UserIdentity = Depends(require_user), db: Session = Depends(get_db)):
    if not address_manager.delete(db, address_id, user.user_id):
        raise NotFoundError('Address not found')
    return {'success': True, 'message': 'Address deleted successfully', 'data': None}

@router.post('/{address_id}/set-default')
def set_default(address_id: int, user: UserIdentity = Depends(require_user), db: Session = Depends(get_db)):
    address = address_manager.set_default(db, address_id, user.user_id)
    if address is None:
        raise NotFoundError('Address not found')
    return {'success': True, 'message': 'Default address updated', 'data': _read(address)}
