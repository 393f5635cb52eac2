"""
Data access layer: invariants that hold regardless of who calls.
"""
from decimal import Decimal

import pytest
from pymongo.errors import DuplicateKeyError

from conftest import make_product
from errors import ConflictError
from schemas import Role, UpsertUser


# ============================================================================
# Users
# ============================================================================

class TestUpsertUser:

    def test_insert_applies_defaults(self, storage):
        user = storage.upsert_user(UpsertUser(id="u-1", first_name="Ada"))
        assert user.role == Role.BUYER
        assert user.is_approved is False
        assert user.first_name == "Ada"
        assert user.created_at is not None

    def test_conflict_merges_only_given_fields(self, storage):
        storage.upsert_user(UpsertUser(id="u-1", email="ada@example.com", first_name="Ada", last_name="Lovelace"))
        user = storage.upsert_user(UpsertUser(id="u-1", role=Role.SELLER, is_approved=True))

        assert user.role == Role.SELLER
        assert user.is_approved is True
        assert user.email == "ada@example.com"
        assert user.first_name == "Ada"
        assert user.last_name == "Lovelace"

    def test_profile_sync_keeps_role(self, storage):
        storage.upsert_user(UpsertUser(id="u-1", role=Role.SELLER, is_approved=True))
        user = storage.upsert_user(UpsertUser(id="u-1", first_name="Grace"))
        assert user.role == Role.SELLER
        assert user.is_approved is True
        assert user.first_name == "Grace"

    def test_duplicate_email_conflicts(self, storage):
        storage.upsert_user(UpsertUser(id="u-1", email="ada@example.com"))
        with pytest.raises(ConflictError):
            storage.upsert_user(UpsertUser(id="u-2", email="ada@example.com"))
        assert storage.get_user("u-2") is None

    def test_concurrent_first_insert_retries_as_update(self, storage, monkeypatch):
        collection_type = type(storage.db["users"])
        real_upsert = collection_type.find_one_and_update
        calls = []

        def racing_upsert(collection, *args, **kwargs):
            if collection.name == "users":
                calls.append(args)
                if len(calls) == 1:
                    collection.insert_one({"id": "u-1", "role": "buyer", "is_approved": False, "first_name": "Ada"})
                    raise DuplicateKeyError("E11000 duplicate key", 11000, {"keyPattern": {"id": 1}})
            return real_upsert(collection, *args, **kwargs)

        monkeypatch.setattr(collection_type, "find_one_and_update", racing_upsert)

        user = storage.upsert_user(UpsertUser(id="u-1", last_name="Lovelace"))
        assert len(calls) == 2
        assert user.first_name == "Ada"
        assert user.last_name == "Lovelace"

    def test_get_missing_user(self, storage):
        assert storage.get_user("nobody") is None


# ============================================================================
# Categories
# ============================================================================

class TestCategories:

    def test_ordered_by_name(self, storage):
        storage.create_category({"name": "Women", "slug": "women", "color": "#EC4899", "icon": "fas fa-female"})
        storage.create_category({"name": "Gifts", "slug": "gifts", "color": "#8B5CF6", "icon": "fas fa-gift"})
        assert [c.name for c in storage.get_categories()] == ["Gifts", "Women"]

    def test_duplicate_slug_conflicts(self, storage):
        storage.create_category({"name": "Men", "slug": "men", "color": "#3B82F6", "icon": "fas fa-male"})
        with pytest.raises(ConflictError):
            storage.create_category({"name": "Gentlemen", "slug": "men", "color": "#000", "icon": "x"})

    def test_duplicate_name_conflicts(self, storage):
        storage.create_category({"name": "Men", "slug": "men", "color": "#3B82F6", "icon": "fas fa-male"})
        with pytest.raises(ConflictError):
            storage.create_category({"name": "Men", "slug": "men-2", "color": "#000", "icon": "x"})


# ============================================================================
# Products
# ============================================================================

class TestProducts:

    def test_listing_hides_unapproved(self, storage):
        pending = make_product(storage, approved=False, name="Pending")
        listed = make_product(storage, approved=True, name="Listed")

        assert [p.id for p in storage.get_products()] == [listed.id]
        assert storage.get_product(pending.id).name == "Pending"

    def test_listing_newest_first_and_category_filter(self, storage):
        first = make_product(storage, name="First", category_id=1)
        second = make_product(storage, name="Second", category_id=2)
        third = make_product(storage, name="Third", category_id=1)

        assert [p.id for p in storage.get_products()] == [third.id, second.id, first.id]
        assert [p.id for p in storage.get_products(category_id=1)] == [third.id, first.id]

    def test_price_has_two_places(self, storage):
        product = make_product(storage, price="5")
        assert product.price == Decimal("5.00")
        assert storage.get_product(product.id).price == Decimal("5.00")

    def test_update_is_partial(self, storage):
        product = make_product(storage, name="Lamp")
        updated = storage.update_product(product.id, {"price": "25.5"})
        assert updated.name == "Lamp"
        assert updated.price == Decimal("25.50")
        assert updated.updated_at is not None

    def test_update_cannot_touch_favorite_count(self, storage, users):
        product = make_product(storage)
        storage.add_to_favorites("buyer-1", product.id)
        updated = storage.update_product(product.id, {"favorite_count": 99})
        assert updated.favorite_count == 1

    def test_update_missing_returns_none(self, storage):
        assert storage.update_product(404, {"name": "Ghost"}) is None

    def test_delete_leaves_dependent_rows(self, storage, users):
        product = make_product(storage)
        storage.add_to_favorites("buyer-1", product.id)
        storage.add_to_cart("buyer-1", product.id, 2)

        storage.delete_product(product.id)

        assert storage.get_product(product.id) is None
        assert storage.db["favorites"].count_documents({"product_id": product.id}) == 1
        assert storage.db["cart_items"].count_documents({"product_id": product.id}) == 1
        assert storage.is_product_favorited("buyer-1", product.id) is True
        assert [i.quantity for i in storage.get_user_cart("buyer-1")] == [2]
        assert storage.get_user_favorites("buyer-1") == []

    def test_recommended_by_favorite_count(self, storage):
        low = make_product(storage, name="Low")
        high = make_product(storage, name="High")
        mid = make_product(storage, name="Mid")
        for count, product in ((1, low), (5, high), (3, mid)):
            for n in range(count):
                storage.add_to_favorites(f"fan-{n}", product.id)

        recommended = storage.get_recommended_products(limit=2)
        assert [p.id for p in recommended] == [high.id, mid.id]
        assert [p.favorite_count for p in recommended] == [5, 3]

    def test_recommended_skips_unapproved(self, storage):
        hidden = make_product(storage, approved=False, name="Hidden")
        storage.add_to_favorites("fan-1", hidden.id)
        shown = make_product(storage, name="Shown")
        assert [p.id for p in storage.get_recommended_products()] == [shown.id]


# ============================================================================
# Favorites
# ============================================================================

class TestFavorites:

    def test_count_tracks_rows(self, storage):
        product = make_product(storage)
        storage.add_to_favorites("a", product.id)
        storage.add_to_favorites("b", product.id)
        storage.add_to_favorites("c", product.id)
        storage.remove_from_favorites("b", product.id)

        rows = storage.db["favorites"].count_documents({"product_id": product.id})
        assert storage.get_product(product.id).favorite_count == rows == 2

    def test_removing_absent_favorite_is_noop(self, storage):
        product = make_product(storage)
        storage.add_to_favorites("a", product.id)
        storage.remove_from_favorites("someone-else", product.id)
        assert storage.get_product(product.id).favorite_count == 1

    def test_duplicate_favorite_conflicts(self, storage):
        product = make_product(storage)
        storage.add_to_favorites("a", product.id)
        with pytest.raises(ConflictError):
            storage.add_to_favorites("a", product.id)
        assert storage.get_product(product.id).favorite_count == 1

    def test_user_favorites_skip_missing_products(self, storage):
        product = make_product(storage)
        storage.add_to_favorites("a", product.id)
        storage.add_to_favorites("a", 9999)

        favorites = storage.get_user_favorites("a")
        assert [p.id for p in favorites] == [product.id]
        assert storage.is_product_favorited("a", product.id) is True
        assert storage.is_product_favorited("b", product.id) is False


# ============================================================================
# Cart
# ============================================================================

class TestCart:

    def test_adding_same_product_merges(self, storage):
        product = make_product(storage)
        first = storage.add_to_cart("a", product.id, 2)
        second = storage.add_to_cart("a", product.id, 3)

        assert second.id == first.id
        assert second.quantity == 5
        assert len(storage.get_user_cart("a")) == 1

    def test_default_quantity_is_one(self, storage):
        product = make_product(storage)
        assert storage.add_to_cart("a", product.id).quantity == 1

    def test_carts_are_per_user(self, storage):
        product = make_product(storage)
        storage.add_to_cart("a", product.id)
        storage.add_to_cart("b", product.id)
        assert len(storage.get_user_cart("a")) == 1
        assert len(storage.get_user_cart("b")) == 1

    def test_update_remove_clear(self, storage):
        lamp = make_product(storage, name="Lamp")
        desk = make_product(storage, name="Desk")
        item = storage.add_to_cart("a", lamp.id)
        storage.add_to_cart("a", desk.id)

        assert storage.update_cart_item(item.id, 7).quantity == 7
        storage.remove_from_cart(item.id)
        assert [i.product_id for i in storage.get_user_cart("a")] == [desk.id]
        storage.clear_cart("a")
        assert storage.get_user_cart("a") == []
        assert storage.update_cart_item(item.id, 2) is None


# ============================================================================
# Orders and applications
# ============================================================================

class TestOrders:

    def test_orders_by_buyer_and_seller(self, storage):
        product = make_product(storage)
        first = storage.create_order({"user_id": "a", "product_id": product.id, "seller_id": "seller-1",
                                      "quantity": 1, "total_price": "19.99"})
        second = storage.create_order({"user_id": "a", "product_id": product.id, "seller_id": "seller-1",
                                       "quantity": 2, "total_price": Decimal("39.98")})

        assert first.status == "pending"
        assert [o.id for o in storage.get_user_orders("a")] == [second.id, first.id]
        assert [o.id for o in storage.get_seller_orders("seller-1")] == [second.id, first.id]
        assert storage.get_seller_orders("seller-2") == []

    def test_status_is_overwritten_as_given(self, storage):
        order = storage.create_order({"user_id": "a", "product_id": 1, "seller_id": "s",
                                      "quantity": 1, "total_price": "1.00"})
        assert storage.update_order_status(order.id, "delivered").status == "delivered"
        assert storage.update_order_status(order.id, "pending").status == "pending"
        assert storage.update_order_status(12345, "shipped") is None


class TestSellerApplications:

    def test_latest_application_wins(self, storage):
        data = {"user_id": "a", "email": "a@example.com", "phone": "+100", "payment_info": "IBAN 1"}
        first = storage.create_seller_application(data)
        storage.update_seller_application_status(first.id, "rejected")
        second = storage.create_seller_application(dict(data, payment_info="IBAN 2"))

        current = storage.get_user_seller_application("a")
        assert current.id == second.id
        assert current.status == "pending"
        assert storage.get_user_seller_application("b") is None
        assert [a.id for a in storage.get_seller_applications()] == [second.id, first.id]
