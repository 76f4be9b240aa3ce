import pytest

from storefront.core.errors import AuthorizationError, NotFoundError, ValidationError
from storefront.core.identity import GuestIdentity
from storefront.db.models import Cart, CartItem
from storefront.store import cart_store


class TestAddItem:
    def test_first_add_creates_cart_and_line(self, db, products, guest_identity):
        line = cart_store.add_item(db, guest_identity, products["tee"].id, None, 2)

        assert line.quantity == 2
        assert line.unit_price == 100000
        assert line.name == "Basic Tee"
        assert line.selected is True
        assert db.query(Cart).filter_by(session_id=guest_identity.session_id).count() == 1

    def test_same_line_accumulates_quantity(self, db, products, guest_identity):
        cart_store.add_item(db, guest_identity, products["tee"].id, {"size": "M"}, 1)
        cart_store.add_item(db, guest_identity, products["tee"].id, {"size": "M"}, 2)

        items = cart_store.get_cart(db, guest_identity)
        assert len(items) == 1
        assert items[0].quantity == 3

    def test_variant_selection_order_does_not_split_lines(self, db, products, guest_identity):
        cart_store.add_item(db, guest_identity, products["tee"].id, {"size": "M", "color": "black"}, 1)
        cart_store.add_item(db, guest_identity, products["tee"].id, {"color": "black", "size": "M"}, 1)

        assert len(cart_store.get_cart(db, guest_identity)) == 1

    def test_different_variants_are_separate_lines(self, db, products, guest_identity):
        cart_store.add_item(db, guest_identity, products["tee"].id, {"size": "M"}, 1)
        cart_store.add_item(db, guest_identity, products["tee"].id, {"size": "L"}, 1)

        assert len(cart_store.get_cart(db, guest_identity)) == 2

    def test_inactive_product_rejected(self, db, products, guest_identity):
        with pytest.raises(ValidationError):
            cart_store.add_item(db, guest_identity, products["retired"].id, None, 1)
        assert cart_store.get_cart(db, guest_identity) == []

    def test_unknown_product_rejected(self, db, products, guest_identity):
        with pytest.raises(ValidationError):
            cart_store.add_item(db, guest_identity, 99999, None, 1)

    def test_quantity_above_stock_rejected(self, db, products, guest_identity):
        cart_store.add_item(db, guest_identity, products["hoodie"].id, None, 2)
        with pytest.raises(ValidationError) as exc:
            cart_store.add_item(db, guest_identity, products["hoodie"].id, None, 1)
        assert exc.value.details["currentStock"] == 2
        assert cart_store.get_cart(db, guest_identity)[0].quantity == 2

    def test_rejected_first_add_leaves_no_cart(self, db, products, guest_identity):
        with pytest.raises(ValidationError):
            cart_store.add_item(db, guest_identity, products["hoodie"].id, None, 3)

        db.expire_all()
        assert not cart_store.has_cart(db, guest_identity.session_id)
        assert db.query(Cart).count() == 0

    def test_get_or_create_reuses_existing_cart(self, db, guest_identity):
        first = cart_store.get_or_create_cart(db, guest_identity)
        second = cart_store.get_or_create_cart(db, guest_identity)
        db.commit()

        assert first.id == second.id
        assert db.query(Cart).filter_by(session_id=guest_identity.session_id).count() == 1

    @pytest.mark.parametrize("quantity", [0, -1, "2", True])
    def test_bad_quantity_rejected(self, db, products, guest_identity, quantity):
        with pytest.raises(ValidationError):
            cart_store.add_item(db, guest_identity, products["tee"].id, None, quantity)

    def test_missing_identity_rejected(self, db, products):
        with pytest.raises(AuthorizationError):
            cart_store.add_item(db, None, products["tee"].id, None, 1)

    def test_user_and_guest_carts_are_separate(self, db, products, user_identity, guest_identity):
        cart_store.add_item(db, user_identity, products["tee"].id, None, 1)
        cart_store.add_item(db, guest_identity, products["cap"].id, None, 1)

        assert [i.product_id for i in cart_store.get_cart(db, user_identity)] == [products["tee"].id]
        assert [i.product_id for i in cart_store.get_cart(db, guest_identity)] == [products["cap"].id]


class TestUpdateAndRemove:
    def test_update_quantity(self, db, products, guest_identity):
        line = cart_store.add_item(db, guest_identity, products["tee"].id, None, 1)
        updated = cart_store.update_quantity(db, guest_identity, line.id, 4)
        assert updated.quantity == 4

    def test_zero_quantity_removes_line(self, db, products, guest_identity):
        line = cart_store.add_item(db, guest_identity, products["tee"].id, None, 1)
        assert cart_store.update_quantity(db, guest_identity, line.id, 0) is None
        assert cart_store.get_cart(db, guest_identity) == []

    def test_remove_unknown_line(self, db, products, guest_identity):
        cart_store.add_item(db, guest_identity, products["tee"].id, None, 1)
        with pytest.raises(NotFoundError):
            cart_store.remove_item(db, guest_identity, 4242)

    def test_cannot_touch_another_identitys_line(self, db, products, user_identity, guest_identity):
        line = cart_store.add_item(db, user_identity, products["tee"].id, None, 1)
        cart_store.add_item(db, guest_identity, products["cap"].id, None, 1)
        with pytest.raises(NotFoundError):
            cart_store.remove_item(db, guest_identity, line.id)

    def test_update_without_cart(self, db, guest_identity):
        with pytest.raises(NotFoundError):
            cart_store.update_quantity(db, guest_identity, 1, 2)

    def test_set_selected(self, db, products, guest_identity):
        line = cart_store.add_item(db, guest_identity, products["tee"].id, None, 1)
        assert cart_store.set_selected(db, guest_identity, line.id, False).selected is False


class TestClearCart:
    def test_clear_keeps_cart_row(self, db, products, guest_identity):
        cart_store.add_item(db, guest_identity, products["tee"].id, None, 1)
        cart_store.add_item(db, guest_identity, products["cap"].id, None, 1)

        cart_store.clear_cart(db, guest_identity)

        assert cart_store.get_cart(db, guest_identity) == []
        assert cart_store.has_cart(db, guest_identity.session_id)
        assert db.query(CartItem).count() == 0

    def test_clear_without_cart_is_noop(self, db):
        cart_store.clear_cart(db, GuestIdentity("no-cart-here"))


def test_variant_key_is_normalized():
    assert cart_store.variant_key({" size ": " M ", "color": "red"}) == '{"color":"red","size":"M"}'
    assert cart_store.variant_key(None) == "{}"
