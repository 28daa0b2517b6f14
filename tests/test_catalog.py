import pytest
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING

from catalog import RangeFilter, SetFilter, build_plan, parse_filters, split_ids
from errors import NotFound, StoreFailure, ValidationFailure
from schemas import Brand, Product


def names(items):
    return [p["name"] for p in items]


# Filter parsing and plan building

def test_price_facet_becomes_range_and_others_become_sets(brands):
    facets = parse_filters({"price": [20, "100"], "sizes": ["9", "10"], "brand": [str(brands["nike"])]})

    assert facets["price"] == RangeFilter(20.0, 100.0)
    assert facets["sizes"] == SetFilter(("9", "10"))
    assert facets["brand"] == SetFilter((brands["nike"],))


def test_empty_and_missing_facets_are_dropped():
    assert parse_filters(None) == {}
    assert parse_filters({"brand": [], "category": None, "price": [], "sizes": ""}) == {}


def test_scalar_facet_value_is_a_one_element_set():
    assert parse_filters({"sizes": "9"}) == {"sizes": SetFilter(("9",))}


def test_empty_object_facet_is_dropped(catalog, products):
    assert parse_filters({"sizes": {}}) == {}
    items, total = catalog.query({"sizes": {}})
    assert total == 3
    assert len(items) == 3


@pytest.mark.parametrize("price", [
    ["a", 10], [10], [1, 2, 3], 15, [True, 10], [100, 20],
    ["nan", 100], [0, "inf"], [float("-inf"), 10], [0, 10 ** 400],
])
def test_malformed_price_range_is_rejected(price):
    with pytest.raises(ValidationFailure) as exc:
        parse_filters({"price": price})
    assert exc.value.field == "filters.price"


def test_operator_facet_keys_are_rejected():
    with pytest.raises(ValidationFailure):
        parse_filters({"$where": ["1"]})


def test_malformed_reference_id_is_rejected():
    with pytest.raises(ValidationFailure) as exc:
        parse_filters({"category": ["not-an-id"]})
    assert exc.value.field == "filters.category"


def test_plan_defaults():
    plan = build_plan()
    assert plan.predicates == {}
    assert plan.sort == [("_id", ASCENDING)]
    assert plan.skip == 0
    assert plan.limit == 50


def test_plan_breaks_sort_ties_on_id():
    plan = build_plan({"price": [0, 10]}, sort_by="price", order="desc")
    assert plan.predicates == {"price": {"$gte": 0.0, "$lte": 10.0}}
    assert plan.sort == [("price", DESCENDING), ("_id", ASCENDING)]


def test_plan_caps_limit():
    assert build_plan(limit=1000).limit == 50
    assert build_plan(limit=1000, max_limit=100).limit == 100
    assert build_plan(limit=5).limit == 5


@pytest.mark.parametrize("kwargs, field", [
    ({"order": "sideways"}, "order"),
    ({"sort_by": "$where"}, "sortBy"),
    ({"sort_by": "price; drop"}, "sortBy"),
    ({"skip": -1}, "skip"),
    ({"limit": 0}, "limit"),
])
def test_plan_rejects_bad_parameters(kwargs, field):
    with pytest.raises(ValidationFailure) as exc:
        build_plan(**kwargs)
    assert exc.value.field == field


def test_split_ids_keeps_order_and_drops_junk():
    a, b = ObjectId(), ObjectId()
    assert split_ids(f"{b}, {a},nope,{b}") == [b, a]
    assert split_ids([a]) == [a]
    assert split_ids(None) == []


# Query execution

@pytest.mark.parametrize("order", ["asc", "desc"])
def test_price_range_is_inclusive_and_independent_of_order(catalog, products, order):
    items, total = catalog.query({"price": [20, 100]}, sort_by="price", order=order)

    assert set(names(items)) == {"Boost Street", "Court Classic"}
    assert total == 2
    expected = ["Boost Street", "Court Classic"]
    assert names(items) == (expected if order == "asc" else expected[::-1])


def test_range_bounds_are_inclusive(catalog, products):
    items, _ = catalog.query({"price": [10, 50]})
    assert names(items) == ["Air Pace", "Boost Street"]


def test_set_facets(catalog, brands, products):
    items, _ = catalog.query({"brand": [str(brands["nike"])]})
    assert names(items) == ["Air Pace", "Court Classic"]

    items, _ = catalog.query({"sizes": ["10"]})
    assert names(items) == ["Boost Street", "Court Classic"]


def test_empty_facet_matches_omitted_facet(catalog, products):
    assert catalog.query({"brand": [], "price": [0, 60]}) == catalog.query({"price": [0, 60]})
    assert catalog.query({"category": []}) == catalog.query({})


def test_default_sort_is_creation_order(catalog, products):
    items, _ = catalog.query()
    assert names(items) == ["Air Pace", "Boost Street", "Court Classic"]


def test_limit_and_skip_bound_the_window(catalog, products):
    items, total = catalog.query(skip=1, limit=1)
    assert names(items) == ["Boost Street"]
    assert total == 3

    items, total = catalog.query(skip=2, limit=5)
    assert len(items) == 1
    assert 2 + len(items) <= total


def test_pagination_is_stable_with_tied_sort_keys(catalog, make_product):
    for i in range(11):
        make_product(f"Tie {i}", 40 if i % 2 else 70)

    everything, total = catalog.query(sort_by="price", order="desc")
    pages = []
    for skip in range(0, total, 3):
        page, _ = catalog.query(sort_by="price", order="desc", skip=skip, limit=3)
        assert len(page) <= 3
        pages.extend(page)

    assert [p["_id"] for p in pages] == [p["_id"] for p in everything]
    assert len({p["_id"] for p in pages}) == total == 11


def test_results_carry_resolved_brand_and_category(catalog, products):
    items, _ = catalog.query({"price": [90, 90]})
    assert items[0]["brand"]["name"] == "Nike"
    assert items[0]["category"]["name"] == "Casual"


def test_dangling_reference_keeps_raw_id(db, catalog, products, brands):
    db["brand"].delete_one({"_id": brands["adidas"]})
    items, _ = catalog.query({"price": [50, 50]})
    assert items[0]["brand"] == brands["adidas"]
    assert items[0]["category"]["name"] == "Casual"


def test_list_collection_uses_larger_cap(catalog, make_product):
    for i in range(105):
        make_product(f"Bulk {i}", i)
    assert len(catalog.list_collection()) == 100
    assert names(catalog.list_collection(sort_by="price", order="desc", limit=2)) == ["Bulk 104", "Bulk 103"]


def test_fetch_by_ids_omits_unknown_ids(catalog, products):
    ids = f"{products['C']},{ObjectId()},{products['A']}"
    items = catalog.fetch_by_ids(ids)
    assert names(items) == ["Court Classic", "Air Pace"]
    assert items[0]["brand"]["name"] == "Nike"


def test_fetch_by_ids_single_and_empty(catalog, products):
    assert names(catalog.fetch_by_ids([str(products["B"])])) == ["Boost Street"]
    assert catalog.fetch_by_ids([str(ObjectId())]) == []
    assert catalog.fetch_by_ids("") == []


# Privileged writes

def test_create_and_update_product(catalog, brands, categories):
    doc = catalog.create_product(Product(
        name="Trail Max", price=120, brand=brands["nike"], category=categories["running"], stock=3,
    ))
    assert doc["price"] == 120
    assert "created_at" in doc

    updated = catalog.update_product(str(doc["_id"]), {"price": 99.5, "brand": brands["adidas"]})
    assert updated["price"] == 99.5
    assert updated["brand"] == brands["adidas"]


def test_create_product_with_unknown_brand_is_rejected(catalog, categories):
    with pytest.raises(ValidationFailure) as exc:
        catalog.create_product(Product(name="Ghost", price=1, brand=ObjectId(), category=categories["casual"]))
    assert exc.value.field == "brand"


def test_update_rejects_null_for_required_fields(catalog, products):
    with pytest.raises(ValidationFailure) as exc:
        catalog.update_product(str(products["A"]), {"price": None})
    assert exc.value.field == "price"

    updated = catalog.update_product(str(products["A"]), {"description": None})
    assert updated["description"] is None
    assert updated["price"] == 10


def test_update_missing_product(catalog):
    with pytest.raises(NotFound):
        catalog.update_product(str(ObjectId()), {"price": 1})
    with pytest.raises(ValidationFailure):
        catalog.update_product("bad", {"price": 1})


def test_brand_names_are_unique(catalog):
    catalog.create_brand(Brand(name="Puma"))
    with pytest.raises(StoreFailure):
        catalog.create_brand(Brand(name="Puma"))
    assert [b["name"] for b in catalog.list_brands()] == ["Puma"]
