from datetime import timedelta

import pytest

from storefront.core.errors import ValidationError
from storefront.db.models import Cart, CartItem
from storefront.services import cart_merger
from storefront.store import cart_store


def _lines(db, identity):
    db.expire_all()
    return {(i.product_id, i.variant_key): i.quantity for i in cart_store.get_cart(db, identity)}


def test_matching_lines_are_summed(db, products, user, user_identity, guest_identity):
    cart_store.add_item(db, user_identity, products["tee"].id, None, 1)
    cart_store.add_item(db, guest_identity, products["tee"].id, None, 2)

    result = cart_merger.claim(db, guest_identity.session_id, user.id)

    assert (result.merged, result.moved) == (1, 0)
    assert _lines(db, user_identity) == {(products["tee"].id, "{}"): 3}


def test_unmatched_lines_move_to_user_cart(db, products, user, user_identity, guest_identity):
    cart_store.add_item(db, user_identity, products["tee"].id, None, 1)
    cart_store.add_item(db, guest_identity, products["cap"].id, {"color": "navy"}, 2)

    result = cart_merger.claim(db, guest_identity.session_id, user.id)

    assert (result.merged, result.moved) == (0, 1)
    assert _lines(db, user_identity) == {
        (products["tee"].id, "{}"): 1,
        (products["cap"].id, '{"color":"navy"}'): 2,
    }


def test_guest_cart_is_deleted(db, products, user, guest_identity):
    cart_store.add_item(db, guest_identity, products["tee"].id, None, 1)

    cart_merger.claim(db, guest_identity.session_id, user.id)

    db.expire_all()
    assert db.query(Cart).filter_by(session_id=guest_identity.session_id).count() == 0
    assert db.query(Cart).filter_by(user_id=user.id).count() == 1


def test_claim_is_idempotent(db, products, user, user_identity, guest_identity):
    cart_store.add_item(db, user_identity, products["tee"].id, None, 1)
    cart_store.add_item(db, guest_identity, products["tee"].id, None, 2)

    cart_merger.claim(db, guest_identity.session_id, user.id)
    second = cart_merger.claim(db, guest_identity.session_id, user.id)

    assert second.noop
    assert _lines(db, user_identity) == {(products["tee"].id, "{}"): 3}
    assert db.query(CartItem).count() == 1


def test_claim_without_user_cart_creates_one(db, products, user, user_identity, guest_identity):
    cart_store.add_item(db, guest_identity, products["cap"].id, None, 4)

    cart_merger.claim(db, guest_identity.session_id, user.id)

    assert _lines(db, user_identity) == {(products["cap"].id, "{}"): 4}


def test_newer_guest_snapshot_wins(db, products, user, user_identity, guest_identity):
    user_line = cart_store.add_item(db, user_identity, products["tee"].id, None, 1)
    products["tee"].price = 90000
    db.commit()
    guest_line = cart_store.add_item(db, guest_identity, products["tee"].id, None, 1)
    user_line.updated_at = guest_line.updated_at - timedelta(minutes=5)
    db.commit()

    cart_merger.claim(db, guest_identity.session_id, user.id)

    db.expire_all()
    (merged,) = cart_store.get_cart(db, user_identity)
    assert merged.unit_price == 90000
    assert merged.quantity == 2


def test_blank_guest_id_rejected(db, user):
    with pytest.raises(ValidationError):
        cart_merger.claim(db, "", user.id)
