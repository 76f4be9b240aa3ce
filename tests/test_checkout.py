import json
import re

import pytest

from conftest import add_address, address_fields, make_user
from storefront.core.errors import ConflictError, DatabaseError, NotFoundError, ValidationError
from storefront.db.models import Address, Order, OrderItem, User
from storefront.services import checkout
from storefront.store import cart_store


def _contact(email="guest@example.com"):
    return checkout.GuestContact(full_name="Citra Lestari", email=email, phone="081298765432")


class TestAuthenticatedCheckout:
    def test_worked_example(self, db, products, user, user_identity):
        address = add_address(db, user.id)
        cart_store.add_item(db, user_identity, products["tee"].id, None, 2)

        receipt = checkout.checkout_authenticated(db, user.id, address.id).unwrap()

        db.expire_all()
        order = db.get(Order, receipt.order_id)
        assert order.order_number == receipt.order_number
        assert (order.subtotal, order.shipping_cost, order.total) == (200000, 15000, 215000)
        assert order.order_status == "pending"
        assert order.payment_status == "pending"
        assert order.customer_email == user.email
        assert json.loads(order.shipping_address)["postalCode"] == "10110"
        (item,) = order.items
        assert (item.product_name, item.quantity, item.unit_price, item.subtotal) == ("Basic Tee", 2, 100000, 200000)
        assert cart_store.get_cart(db, user_identity) == []

    def test_order_number_format(self, db, products, user, user_identity):
        address = add_address(db, user.id)
        cart_store.add_item(db, user_identity, products["cap"].id, None, 1)
        receipt = checkout.checkout_authenticated(db, user.id, address.id).unwrap()
        assert re.fullmatch(r"ORD-\d{8}-[A-Z0-9]{5}", receipt.order_number)

    def test_empty_cart(self, db, user):
        address = add_address(db, user.id)
        result = checkout.checkout_authenticated(db, user.id, address.id)
        assert isinstance(result.error, ValidationError)
        assert db.query(Order).count() == 0

    def test_stale_cart_fails_with_issue_list(self, db, products, user, user_identity):
        address = add_address(db, user.id)
        cart_store.add_item(db, user_identity, products["tee"].id, None, 2)
        products["tee"].is_active = False
        db.commit()

        result = checkout.checkout_authenticated(db, user.id, address.id)

        assert isinstance(result.error, ValidationError)
        assert result.error.details["errors"][0]["type"] == "PRODUCT_UNAVAILABLE"
        assert db.query(Order).count() == 0
        assert len(cart_store.get_cart(db, user_identity)) == 1

    def test_someone_elses_address_is_not_found(self, db, products, user, other_user, user_identity):
        foreign = add_address(db, other_user.id, street_address="Jl. Rahasia No. 99")
        cart_store.add_item(db, user_identity, products["tee"].id, None, 1)

        result = checkout.checkout_authenticated(db, user.id, foreign.id)

        assert isinstance(result.error, NotFoundError)
        assert "Rahasia" not in result.error.message
        assert result.error.details is None
        assert db.query(Order).count() == 0

    def test_failure_mid_transaction_rolls_everything_back(self, db, products, user, user_identity, monkeypatch):
        address = add_address(db, user.id)
        cart_store.add_item(db, user_identity, products["tee"].id, None, 2)
        cart_store.add_item(db, user_identity, products["cap"].id, None, 1)

        def broken_snapshot(line):
            # violates NOT NULL on product_name at flush time
            return OrderItem(product_id=line.product_id, product_name=None, product_sku=line.sku,
                             quantity=line.quantity, unit_price=line.unit_price,
                             subtotal=line.quantity * line.unit_price)

        monkeypatch.setattr(checkout, "snapshot_line", broken_snapshot)

        with pytest.raises(DatabaseError):
            checkout.checkout_authenticated(db, user.id, address.id)

        db.expire_all()
        assert db.query(Order).count() == 0
        assert db.query(OrderItem).count() == 0
        assert len(cart_store.get_cart(db, user_identity)) == 2


class TestGuestCheckout:
    def test_creates_user_address_and_order(self, db, products, guest_identity):
        cart_store.add_item(db, guest_identity, products["cap"].id, None, 2)

        receipt = checkout.checkout_guest(db, _contact(), address_fields(), guest_identity.session_id).unwrap()

        db.expire_all()
        user = db.query(User).filter_by(email="guest@example.com").one()
        assert receipt.user_id == user.id
        assert user.role == "user"
        assert user.password_hash.startswith("$2")
        (address,) = db.query(Address).filter_by(user_id=user.id).all()
        assert address.is_default
        order = db.get(Order, receipt.order_id)
        assert order.user_id == user.id
        assert order.total == 2 * 85000 + 15000
        assert cart_store.get_cart(db, guest_identity) == []

    def test_session_without_cart(self, db):
        result = checkout.checkout_guest(db, _contact(), address_fields(), "never-had-a-cart")
        assert isinstance(result.error, ValidationError)

    def test_missing_session(self, db):
        assert isinstance(checkout.checkout_guest(db, _contact(), address_fields(), None).error, ValidationError)

    def test_existing_email_conflicts_before_any_write(self, db, products, guest_identity):
        make_user(db, email="guest@example.com")
        cart_store.add_item(db, guest_identity, products["cap"].id, None, 1)

        result = checkout.checkout_guest(db, _contact("Guest@Example.com"), address_fields(), guest_identity.session_id)

        assert isinstance(result.error, ConflictError)
        db.expire_all()
        assert db.query(User).count() == 1
        assert db.query(Address).count() == 0
        assert db.query(Order).count() == 0
        assert len(cart_store.get_cart(db, guest_identity)) == 1

    def test_bad_postal_code(self, db, products, guest_identity):
        cart_store.add_item(db, guest_identity, products["cap"].id, None, 1)
        result = checkout.checkout_guest(db, _contact(), address_fields(postal_code="12"), guest_identity.session_id)
        assert isinstance(result.error, ValidationError)
        assert db.query(User).count() == 0


def test_compute_totals_uses_flat_shipping(db, products, guest_identity):
    cart_store.add_item(db, guest_identity, products["tee"].id, None, 2)
    cart_store.add_item(db, guest_identity, products["cap"].id, None, 1)
    assert checkout.compute_totals(cart_store.get_cart(db, guest_identity)) == (285000, 15000, 300000)
