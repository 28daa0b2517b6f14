"""
Catalog Query Engine

Turns a shop request (facet filters, sort, skip/limit) into a query plan,
runs it against the ``product`` collection and resolves each product's
brand and category references with a separate fetch.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from numbers import Real
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

import settings
from database import create_document, get_documents, parse_object_id
from errors import NotFound, StoreFailure, ValidationFailure
from logger import get_logger
from schemas import Brand, Category, Product

logger = get_logger(__name__)

PRICE_FACET = "price"
# Facets holding document ids rather than plain values
REFERENCE_FACETS = frozenset({"_id", "brand", "category"})
# Product fields resolved into full documents, with the collection they point at
REFERENCES = {"brand": "brand", "category": "category"}
# Product fields that may be cleared with null on update
NULLABLE_PRODUCT_FIELDS = frozenset({"description"})

SORT_ORDERS = {
    "asc": ASCENDING,
    "ascending": ASCENDING,
    "1": ASCENDING,
    "desc": DESCENDING,
    "descending": DESCENDING,
    "-1": DESCENDING,
}
_FIELD_PATH = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


@dataclass(frozen=True)
class RangeFilter:
    low: float
    high: float

    def predicate(self) -> Dict[str, Any]:
        return {"$gte": self.low, "$lte": self.high}


@dataclass(frozen=True)
class SetFilter:
    values: Tuple[Any, ...]

    def predicate(self) -> Dict[str, Any]:
        return {"$in": list(self.values)}


Facet = Union[RangeFilter, SetFilter]


@dataclass
class QueryPlan:
    predicates: Dict[str, Any] = field(default_factory=dict)
    sort: List[Tuple[str, int]] = field(default_factory=lambda: [("_id", ASCENDING)])
    skip: int = 0
    limit: int = settings.SHOP_PAGE_LIMIT


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, tuple, set, str, dict)) and len(value) == 0:
        return True
    return False


def _to_number(value: Any, field_name: str) -> float:
    if isinstance(value, bool):
        raise ValidationFailure("Price bounds must be numeric", field=field_name)
    try:
        number = float(value) if isinstance(value, Real) else float(str(value).strip())
    except (ValueError, OverflowError):
        raise ValidationFailure("Price bounds must be numeric", field=field_name)
    if not math.isfinite(number):
        raise ValidationFailure("Price bounds must be finite", field=field_name)
    return number


def _range_filter(value: Any) -> RangeFilter:
    field_name = f"filters.{PRICE_FACET}"
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ValidationFailure("Price filter takes exactly two bounds [low, high]", field=field_name)
    low, high = (_to_number(v, field_name) for v in value)
    if low > high:
        raise ValidationFailure("Price filter low bound is above the high bound", field=field_name)
    return RangeFilter(low, high)


def _set_filter(key: str, value: Any) -> SetFilter:
    values = list(value) if isinstance(value, (list, tuple, set)) else [value]
    if key in REFERENCE_FACETS:
        ids = []
        for v in values:
            oid = parse_object_id(v)
            if oid is None:
                raise ValidationFailure(f"Invalid id {v!r}", field=f"filters.{key}")
            ids.append(oid)
        values = ids
    return SetFilter(tuple(values))


def parse_filters(payload: Optional[Mapping[str, Any]]) -> Dict[str, Facet]:
    """Map a raw ``{facet: values}`` payload to typed facet filters.

    Facets that are missing or empty impose no constraint and are dropped.
    """
    facets: Dict[str, Facet] = {}
    if not payload:
        return facets
    if not isinstance(payload, Mapping):
        raise ValidationFailure("Filters must be an object", field="filters")

    for key, value in payload.items():
        if not isinstance(key, str) or not key or key.startswith("$"):
            raise ValidationFailure(f"Invalid filter facet {key!r}", field="filters")
        if _is_empty(value):
            continue
        if key == PRICE_FACET:
            facets[key] = _range_filter(value)
        else:
            facets[key] = _set_filter(key, value)
    return facets


def _sort_direction(order: Any) -> int:
    if order is None or order == "":
        return ASCENDING
    direction = SORT_ORDERS.get(str(order).strip().lower())
    if direction is None:
        raise ValidationFailure(f"Unknown sort order {order!r}", field="order")
    return direction


def build_plan(
    filters: Optional[Mapping[str, Any]] = None,
    sort_by: Optional[str] = None,
    order: Optional[str] = None,
    skip: Optional[int] = None,
    limit: Optional[int] = None,
    max_limit: int = settings.SHOP_PAGE_LIMIT,
) -> QueryPlan:
    facets = parse_filters(filters)
    predicates = {key: facet.predicate() for key, facet in facets.items()}

    sort_by = sort_by or "_id"
    if not _FIELD_PATH.match(sort_by):
        raise ValidationFailure(f"Invalid sort field {sort_by!r}", field="sortBy")
    sort = [(sort_by, _sort_direction(order))]
    # _id breaks ties so pages never overlap or skip rows
    if sort_by != "_id":
        sort.append(("_id", ASCENDING))

    skip = 0 if skip is None else skip
    if skip < 0:
        raise ValidationFailure("skip must not be negative", field="skip")
    if limit is None:
        limit = max_limit
    if limit < 1:
        raise ValidationFailure("limit must be at least 1", field="limit")

    return QueryPlan(predicates=predicates, sort=sort, skip=skip, limit=min(limit, max_limit))


def split_ids(ids: Union[str, Iterable[Any], None]) -> List[ObjectId]:
    """Parse a single id, a comma separated string or a list of ids.

    Malformed ids are dropped and duplicates collapsed, keeping first-seen order.
    """
    if ids is None:
        return []
    raw = ids.split(",") if isinstance(ids, str) else list(ids)
    seen = set()
    parsed = []
    for item in raw:
        oid = parse_object_id(item)
        if oid is None:
            logger.debug(f"Ignoring malformed product id {item!r}")
            continue
        if oid not in seen:
            seen.add(oid)
            parsed.append(oid)
    return parsed


class CatalogQueryEngine:
    def __init__(self, db: Database):
        self.db = db
        self.products = db["product"]

    # Queries
    def query(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        sort_by: Optional[str] = None,
        order: Optional[str] = None,
        skip: Optional[int] = None,
        limit: Optional[int] = None,
        max_limit: int = settings.SHOP_PAGE_LIMIT,
    ) -> Tuple[List[Dict[str, Any]], int]:
        plan = build_plan(filters, sort_by, order, skip, limit, max_limit)
        return self.execute(plan)

    def execute(self, plan: QueryPlan) -> Tuple[List[Dict[str, Any]], int]:
        try:
            cursor = (
                self.products.find(plan.predicates)
                .sort(plan.sort)
                .skip(plan.skip)
                .limit(plan.limit)
            )
            items = list(cursor)
            total = self.products.count_documents(plan.predicates)
        except PyMongoError as e:
            logger.error(f"Product query failed: {e}")
            raise StoreFailure(str(e)) from e
        return self.resolve_references(items), total

    def list_collection(self, sort_by: Optional[str] = None, order: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        items, _ = self.query(sort_by=sort_by, order=order, limit=limit, max_limit=settings.COLLECTION_LIMIT)
        return items

    def fetch_by_ids(self, ids: Union[str, Iterable[Any], None]) -> List[Dict[str, Any]]:
        """Products for ``ids`` in the requested order; unknown ids are omitted."""
        wanted = split_ids(ids)
        if not wanted:
            return []
        try:
            found = {p["_id"]: p for p in self.products.find({"_id": {"$in": wanted}})}
        except PyMongoError as e:
            logger.error(f"Product lookup failed: {e}")
            raise StoreFailure(str(e)) from e
        return self.resolve_references([found[oid] for oid in wanted if oid in found])

    def resolve_references(self, products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Replace brand and category ids with the referenced documents.

        One ``$in`` fetch per referenced collection. A reference whose
        document no longer exists keeps its raw id.
        """
        resolved = [dict(p) for p in products]
        for product_field, collection in REFERENCES.items():
            ref_ids = {p[product_field] for p in resolved if isinstance(p.get(product_field), ObjectId)}
            if not ref_ids:
                continue
            docs = {d["_id"]: d for d in self.db[collection].find({"_id": {"$in": list(ref_ids)}})}
            for p in resolved:
                ref = p.get(product_field)
                if ref in docs:
                    p[product_field] = docs[ref]
        return resolved

    # Privileged writes
    def _check_references(self, data: Dict[str, Any]):
        for product_field, collection in REFERENCES.items():
            if product_field in data and not self.db[collection].find_one({"_id": data[product_field]}):
                raise ValidationFailure(f"Unknown {product_field}", field=product_field)

    def create_product(self, product: Product) -> Dict[str, Any]:
        data = product.model_dump()
        self._check_references(data)
        try:
            product_id = create_document(self.db, "product", data)
        except PyMongoError as e:
            logger.error(f"Failed to create product: {e}")
            raise StoreFailure(str(e)) from e
        logger.info(f"Created product {product_id} ({product.name})")
        return self.products.find_one({"_id": product_id})

    def update_product(self, product_id: Any, changes: Dict[str, Any]) -> Dict[str, Any]:
        oid = parse_object_id(product_id)
        if oid is None:
            raise ValidationFailure("Invalid product id", field="id")
        if not changes:
            raise ValidationFailure("No fields to update")
        for key, value in changes.items():
            if value is None and key not in NULLABLE_PRODUCT_FIELDS:
                raise ValidationFailure(f"{key} cannot be null", field=key)
        self._check_references(changes)
        update = dict(changes)
        update["updated_at"] = datetime.now(timezone.utc)
        try:
            res = self.products.update_one({"_id": oid}, {"$set": update})
        except PyMongoError as e:
            logger.error(f"Failed to update product {oid}: {e}")
            raise StoreFailure(str(e)) from e
        if res.matched_count == 0:
            raise NotFound("Product not found")
        logger.info(f"Updated product {oid}: {sorted(changes)}")
        return self.products.find_one({"_id": oid})

    # Brands and categories
    def _create_named(self, collection: str, name: str) -> Dict[str, Any]:
        try:
            doc_id = create_document(self.db, collection, {"name": name})
        except PyMongoError as e:
            logger.error(f"Failed to create {collection} {name!r}: {e}")
            raise StoreFailure(str(e)) from e
        logger.info(f"Created {collection} {name!r}")
        return self.db[collection].find_one({"_id": doc_id})

    def create_brand(self, brand: Brand) -> Dict[str, Any]:
        return self._create_named("brand", brand.name)

    def create_category(self, category: Category) -> Dict[str, Any]:
        return self._create_named("category", category.name)

    def list_brands(self) -> List[Dict[str, Any]]:
        return get_documents(self.db, "brand")

    def list_categories(self) -> List[Dict[str, Any]]:
        return get_documents(self.db, "category")
