from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

import settings
from catalog import CatalogQueryEngine
from database import parse_object_id
from errors import NotFound, StoreFailure, ValidationFailure
from logger import get_logger
from schemas import CartLine

logger = get_logger(__name__)


class CartManager:
    """
    Mutations of the cart embedded in the user document.

    The store only guarantees atomic single-document updates, so every step
    here is one atomic update:
      - increment the line for a product if the cart has one
      - otherwise append a new line, but only if the cart still has none
    If the append finds a line already there (a concurrent add won), the
    increment is retried. A cart never holds two lines for one product.
    """

    def __init__(self, db: Database, catalog: CatalogQueryEngine, max_attempts: int = settings.CART_ADD_ATTEMPTS):
        self.users = db["user"]
        self.catalog = catalog
        self.max_attempts = max_attempts

    def _product_id(self, product_id: Any, field: str):
        oid = parse_object_id(product_id)
        if oid is None:
            raise ValidationFailure("Invalid product id", field=field)
        return oid

    def _increment(self, user_id, product_id, amount: int):
        res = self.users.update_one(
            {"_id": user_id, "cart.id": product_id},
            {"$inc": {"cart.$.quantity": amount}},
        )
        if res.matched_count == 0:
            return None
        return self.users.find_one({"_id": user_id}, {"cart": 1})

    def _append(self, user_id, product_id, amount: int):
        line = CartLine(id=product_id, quantity=amount).model_dump()
        return self.users.find_one_and_update(
            {"_id": user_id, "cart.id": {"$ne": product_id}},
            {"$push": {"cart": line}},
            return_document=ReturnDocument.AFTER,
        )

    def _accumulate(self, user_id, product_id, amount: int) -> List[Dict[str, Any]]:
        try:
            for attempt in range(1, self.max_attempts + 1):
                doc = self._increment(user_id, product_id, amount)
                if doc is not None:
                    logger.info(f"Cart of user {user_id}: product {product_id} quantity +{amount}")
                    return doc["cart"]

                doc = self._append(user_id, product_id, amount)
                if doc is not None:
                    logger.info(f"Cart of user {user_id}: appended product {product_id} x{amount}")
                    return doc["cart"]

                if self.users.find_one({"_id": user_id}, {"_id": 1}) is None:
                    raise NotFound("User not found")
                logger.warning(
                    f"Cart of user {user_id} changed under add of {product_id}, retrying (attempt {attempt})"
                )
        except PyMongoError as e:
            logger.error(f"Cart update failed for user {user_id}: {e}")
            raise StoreFailure(str(e)) from e
        raise StoreFailure("Cart update conflict, please retry")

    def add_to_cart(self, user_id, product_id: Any) -> List[Dict[str, Any]]:
        pid = self._product_id(product_id, "productId")
        if self.catalog.products.find_one({"_id": pid}, {"_id": 1}) is None:
            raise ValidationFailure("Unknown product", field="productId")
        return self._accumulate(user_id, pid, 1)

    def remove_from_cart(self, user_id, product_id: Any) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        """Pull every line for ``product_id``; a missing line is a no-op.

        Returns the updated cart and its lines resolved to full products.
        """
        pid = self._product_id(product_id, "_id")
        try:
            doc = self.users.find_one_and_update(
                {"_id": user_id},
                {"$pull": {"cart": {"id": pid}}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.error(f"Cart update failed for user {user_id}: {e}")
            raise StoreFailure(str(e)) from e
        if doc is None:
            raise NotFound("User not found")
        logger.info(f"Cart of user {user_id}: removed product {pid}")
        cart = doc.get("cart", [])
        return cart, self.detail(cart)

    def merge_cart(self, user_id, lines: Iterable[Tuple[Any, int]]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        """Fold ``(product_id, quantity)`` pairs, e.g. a guest cart, into the user's cart."""
        amounts: "OrderedDict[Any, int]" = OrderedDict()
        for product_id, quantity in lines:
            pid = self._product_id(product_id, "items.productId")
            if quantity < 1:
                raise ValidationFailure("Quantity must be at least 1", field="items.quantity")
            amounts[pid] = amounts.get(pid, 0) + quantity

        known = {p["_id"] for p in self.catalog.products.find({"_id": {"$in": list(amounts)}}, {"_id": 1})}
        unknown = [str(pid) for pid in amounts if pid not in known]
        if unknown:
            raise ValidationFailure(f"Unknown products: {', '.join(unknown)}", field="items.productId")

        for pid, amount in amounts.items():
            self._accumulate(user_id, pid, amount)
        return self.get_cart(user_id)

    def get_cart(self, user_id) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        doc = self.users.find_one({"_id": user_id}, {"cart": 1})
        if doc is None:
            raise NotFound("User not found")
        cart = doc.get("cart", [])
        return cart, self.detail(cart)

    def detail(self, cart: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return self.catalog.fetch_by_ids([line["id"] for line in cart])
