"""Tests for the rug catalog."""

import pytest
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING

import catalog
from catalog import RugFilter, build_rug_query, build_rug_sort
from database import RUGS
from errors import NotFoundError, ValidationError
from schemas import RugCreateRequest, RugUpdateRequest


def new_rug(**overrides):
    fields = dict(
        title="Tabriz Wool",
        brand="Dastkar",
        images=["https://cdn.example.com/tabriz.jpg"],
        category="Persian",
        originalPrice=999,
        discountPercent=50,
        stock=4,
    )
    fields.update(overrides)
    return RugCreateRequest(**fields)


class TestFilters:
    def test_empty_filter(self):
        assert build_rug_query(RugFilter()) == {}

    def test_all_criteria(self):
        query = build_rug_query(RugFilter(
            category="Persian", brand="Dastkar", is_on_sale=True, is_best_seller=False, is_active=True,
            min_price=1000, max_price=5000, colors=["red"], sizes=["5x8"],
        ))
        assert query == {
            "category": "Persian",
            "brand": "Dastkar",
            "isOnSale": True,
            "isBestSeller": False,
            "isActive": True,
            "salePrice": {"$gte": 1000, "$lte": 5000},
            "colors": {"$in": ["red"]},
            "sizes": {"$in": ["5x8"]},
        }

    def test_sort(self):
        assert build_rug_sort(RugFilter(sort_by="price", sort_order="asc")) == [("salePrice", ASCENDING)]
        assert build_rug_sort(RugFilter()) == [("createdAt", DESCENDING)]


class TestListing:
    def test_list_filters_and_paginates(self, db, make_rug):
        for i in range(3):
            make_rug(title=f"Rug {i}", category="Persian")
        make_rug(category="Kilim")
        make_rug(category="Persian", isActive=False)

        docs, pagination = catalog.list_rugs(db, RugFilter(category="Persian", is_active=True, limit=2))
        assert len(docs) == 2
        assert pagination == {"page": 1, "limit": 2, "total": 3, "pages": 2}

    def test_limit_is_capped(self, db, make_rug):
        make_rug()
        _, pagination = catalog.list_rugs(db, RugFilter(limit=5000, page=0))
        assert pagination["limit"] == 20
        assert pagination["page"] == 1


class TestWrites:
    def test_create_derives_sale_price(self, db):
        rug = catalog.create_rug(db, new_rug(), created_by="admin-1")
        assert rug["salePrice"] == 500
        assert rug["createdBy"] == "admin-1"
        assert rug["isActive"] is True

    @pytest.mark.parametrize("overrides", [
        {"originalPrice": 0},
        {"discountPercent": 101},
        {"images": []},
        {"images": ["ftp://cdn.example.com/a.jpg"]},
        {"stock": -1},
    ])
    def test_create_rejects(self, db, overrides):
        with pytest.raises(ValidationError):
            catalog.create_rug(db, new_rug(**overrides))

    @pytest.mark.parametrize("overrides, field", [
        ({"title": "T" * 201}, "title"),
        ({"brand": "B" * 101}, "brand"),
        ({"category": "C" * 101}, "category"),
        ({"description": "D" * 2001}, "description"),
    ])
    def test_create_enforces_length_limits(self, db, overrides, field):
        with pytest.raises(ValidationError) as exc:
            catalog.create_rug(db, new_rug(**overrides))
        assert exc.value.message.startswith(f"Validation error: {field}:")
        assert db[RUGS].count_documents({}) == 0

    def test_update_enforces_length_limits(self, db):
        rug = catalog.create_rug(db, new_rug())
        with pytest.raises(ValidationError) as exc:
            catalog.update_rug(db, str(rug["_id"]), RugUpdateRequest(title="T" * 10000))
        assert exc.value.message.startswith("Validation error: title:")
        assert db[RUGS].find_one({"_id": rug["_id"]})["title"] == "Tabriz Wool"

    def test_update_recomputes_sale_price(self, db):
        rug = catalog.create_rug(db, new_rug(originalPrice=10000, discountPercent=0))
        updated = catalog.update_rug(db, str(rug["_id"]), RugUpdateRequest(discountPercent=20, isOnSale=True))
        assert updated["salePrice"] == 8000
        assert updated["isOnSale"] is True

    def test_update_plain_fields(self, db):
        rug = catalog.create_rug(db, new_rug())
        updated = catalog.update_rug(db, str(rug["_id"]), RugUpdateRequest(title="Renamed", stock=0))
        assert updated["title"] == "Renamed"
        assert updated["stock"] == 0
        assert updated["salePrice"] == rug["salePrice"]

    def test_update_missing(self, db):
        with pytest.raises(NotFoundError):
            catalog.update_rug(db, str(ObjectId()), RugUpdateRequest(title="x"))

    def test_delete(self, db, make_rug):
        rug = make_rug()
        catalog.delete_rug(db, rug)
        assert db[RUGS].count_documents({}) == 0
        with pytest.raises(NotFoundError):
            catalog.delete_rug(db, rug)


class TestStock:
    def test_decrement_and_increment(self, db, make_rug):
        rug = ObjectId(make_rug(stock=10))
        catalog.decrement_stock(db, rug, 3)
        catalog.increment_stock(db, rug, 1)
        assert db[RUGS].find_one({"_id": rug})["stock"] == 8

    def test_find_many_skips_unknown_and_invalid(self, db, make_rug):
        rug = make_rug()
        found = catalog.find_many(db, [rug, str(ObjectId()), "junk"])
        assert list(found) == [rug]

    @pytest.mark.parametrize("stock, valid", [
        (0, True), (5, True), (-1, False), (None, False), (True, False), (2.5, False),
    ])
    def test_has_valid_stock(self, stock, valid):
        assert catalog.has_valid_stock({"stock": stock}) is valid
