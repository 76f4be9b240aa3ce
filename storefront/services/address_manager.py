"""A user's address book.

Every mutation that touches the default flag runs unset-then-set inside the
same transaction as the triggering write, so a user with addresses always has
exactly one default and a user without addresses has none. Lookups for an
address the caller does not own answer ``None``/``False`` rather than raising.
"""
import re
from contextlib import contextmanager
from typing import Any, Iterator, List, Mapping, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.core.errors import ConflictError, DatabaseError, ValidationError
from storefront.core.results import Result
from storefront.db.models import Address
from storefront.db.session import transaction
from storefront.security.utils import now_utc

logger = structlog.get_logger(__name__)

POSTAL_CODE_RE = re.compile(r'^\d{5}$')
DEFAULT_COUNTRY = 'ID'

EDITABLE_FIELDS = (
    'label', 'recipient_name', 'phone_number', 'street_address', 'address_line2',
    'village', 'district', 'city', 'state', 'postal_code', 'country',
)
REQUIRED_FIELDS = ('label', 'recipient_name', 'phone_number', 'street_address', 'city', 'state', 'postal_code')


def validate_fields(data: Mapping[str, Any], partial: bool = False) -> Optional[ValidationError]:
    """Check address fields; ``partial`` only checks the keys that are present."""
    for name in REQUIRED_FIELDS:
        if partial and name not in data:
            continue
        value = data.get(name)
        if value is None or not str(value).strip():
            return ValidationError(f'{name} is required', {'field': name})
    if 'postal_code' in data and not POSTAL_CODE_RE.match(str(data['postal_code'])):
        return ValidationError('Postal code must be 5 digits', {'field': 'postal_code'})
    return None


def _lock_user_rows(db: Session, user_id: int) -> List[Address]:
    return list(db.execute(
        select(Address).where(Address.user_id == user_id).with_for_update()
    ).scalars())


def _unset_defaults(db: Session, user_id: int, keep_id: Optional[int] = None) -> None:
    stmt = update(Address).where(Address.user_id == user_id)
    if keep_id is not None:
        stmt = stmt.where(Address.id != keep_id)
    db.execute(stmt.values(is_default=False, updated_at=now_utc()))


def _owned(db: Session, address_id: int, user_id: int) -> Optional[Address]:
    return db.execute(
        select(Address).where(Address.id == address_id, Address.user_id == user_id)
    ).scalars().first()


@contextmanager
def _write(op: str, user_id: int) -> Iterator[None]:
    """Map integrity and driver failures raised inside an address transaction."""
    try:
        yield
    except IntegrityError as exc:
        logger.warning('address_write_conflict', op=op, user_id=user_id)
        raise ConflictError('Address book changed concurrently, retry') from exc
    except SQLAlchemyError as exc:
        logger.error('address_write_failed', op=op, user_id=user_id, error=str(exc))
        raise DatabaseError('Failed to update address') from exc


def list_addresses(db: Session, user_id: int) -> List[Address]:
    return list(db.execute(
        select(Address)
        .where(Address.user_id == user_id)
        .order_by(Address.is_default.desc(), Address.created_at.desc(), Address.id.desc())
    ).scalars())


def get_address(db: Session, address_id: int, user_id: int) -> Optional[Address]:
    return _owned(db, address_id, user_id)


def get_default(db: Session, user_id: int) -> Optional[Address]:
    return db.execute(
        select(Address).where(Address.user_id == user_id, Address.is_default.is_(True))
    ).scalars().first()


def create(db: Session, user_id: int, data: Mapping[str, Any]) -> Result[Address]:
    error = validate_fields(data)
    if error is not None:
        return Result.failure(error)

    with _write('create', user_id), transaction(db):
        existing = _lock_user_rows(db, user_id)
        make_default = not existing or bool(data.get('is_default'))
        if make_default:
            _unset_defaults(db, user_id)
        address = Address(user_id=user_id, is_default=make_default)
        for name in EDITABLE_FIELDS:
            if name in data and data[name] is not None:
                setattr(address, name, data[name])
        if not address.country:
            address.country = DEFAULT_COUNTRY
        db.add(address)
        db.flush()

    logger.info('address_created', user_id=user_id, address_id=address.id, is_default=address.is_default)
    return Result.success(address)


def update_address(db: Session, address_id: int, user_id: int, data: Mapping[str, Any]) -> Result[Optional[Address]]:
    """Apply a partial update; the value is ``None`` when the caller owns no such address.

    ``is_default: false`` never demotes the current default; pick another
    address with :func:`set_default` instead.
    """
    error = validate_fields(data, partial=True)
    if error is not None:
        return Result.failure(error)

    with _write('update', user_id), transaction(db):
        _lock_user_rows(db, user_id)
        address = _owned(db, address_id, user_id)
        if address is None:
            return Result.success(None)
        if data.get('is_default'):
            _unset_defaults(db, user_id, keep_id=address.id)
            address.is_default = True
        for name in EDITABLE_FIELDS:
            if name in data and data[name] is not None:
                setattr(address, name, data[name])
        address.updated_at = now_utc()
        db.flush()

    logger.info('address_updated', user_id=user_id, address_id=address_id)
    return Result.success(address)


def delete(db: Session, address_id: int, user_id: int) -> bool:
    with _write('delete', user_id), transaction(db):
        _lock_user_rows(db, user_id)
        address = _owned(db, address_id, user_id)
        if address is None:
            return False
        was_default = address.is_default
        db.delete(address)
        db.flush()
        promoted = None
        if was_default:
            promoted = db.execute(
                select(Address)
                .where(Address.user_id == user_id)
                .order_by(Address.created_at.desc(), Address.id.desc())
                .limit(1)
            ).scalars().first()
            if promoted is not None:
                promoted.is_default = True
                promoted.updated_at = now_utc()

    logger.info('address_deleted', user_id=user_id, address_id=address_id,
                promoted_id=promoted.id if promoted is not None else None)
    return True


def set_default(db: Session, address_id: int, user_id: int) -> Optional[Address]:
    with _write('set_default', user_id), transaction(db):
        _lock_user_rows(db, user_id)
        address = _owned(db, address_id, user_id)
        if address is None:
            return None
        _unset_defaults(db, user_id)
        db.execute(
            update(Address).where(Address.id == address.id).values(is_default=True, updated_at=now_utc())
        )

    logger.info('address_default_set', user_id=user_id, address_id=address_id)
    return address
