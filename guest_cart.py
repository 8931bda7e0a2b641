"""
Guest cart kept on the shopper's device.

A single list of lines per device, persisted as JSON. Lines are keyed by
(product_id, size). On login the list is handed to ``POST /cart/sync`` and
the local copy is dropped once the server accepted it.
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class GuestCart:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._items: List[Dict[str, Any]] = self._load()

    def _load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable guest cart at %s", self.path)
            return []
        return data if isinstance(data, list) else []

    def _save(self) -> None:
        if self._items:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self._items), encoding="utf-8")
        elif self.path.exists():
            self.path.unlink()

    def _find(self, product_id: str, size: Optional[str]) -> Optional[Dict[str, Any]]:
        for item in self._items:
            if item["product_id"] == product_id and item.get("size") == size:
                return item
        return None

    @property
    def items(self) -> List[Dict[str, Any]]:
        return [dict(i) for i in self._items]

    @property
    def count(self) -> int:
        return sum(i["quantity"] for i in self._items)

    @property
    def total(self) -> float:
        return round(sum(float(i.get("price") or 0) * i["quantity"] for i in self._items), 2)

    def add(self, product: Dict[str, Any], size: Optional[str] = None, quantity: int = 1) -> Dict[str, Any]:
        """Add a product (a catalog dict with at least ``id``) to the cart."""
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        item = self._find(product["id"], size)
        if item:
            item["quantity"] += quantity
        else:
            item = {
                "product_id": product["id"],
                "size": size,
                "quantity": quantity,
                "name": product.get("name"),
                "price": product.get("price"),
                "image_url": product.get("image_url"),
            }
            self._items.append(item)
        self._save()
        return dict(item)

    def update_quantity(self, product_id: str, quantity: int, size: Optional[str] = None) -> Dict[str, Any]:
        if quantity < 1:
            raise ValueError("quantity must be at least 1, use remove() instead")
        item = self._find(product_id, size)
        if item is None:
            raise KeyError((product_id, size))
        item["quantity"] = quantity
        self._save()
        return dict(item)

    def remove(self, product_id: str, size: Optional[str] = None) -> None:
        self._items = [i for i in self._items if not (i["product_id"] == product_id and i.get("size") == size)]
        self._save()

    def clear(self) -> None:
        self._items = []
        self._save()

    def sync_payload(self) -> Dict[str, Any]:
        return {"items": [{"product_id": i["product_id"], "quantity": i["quantity"], "size": i.get("size")}
                          for i in self._items]}

    def sync_to_account(self, submit: Callable[[Dict[str, Any]], Any]) -> Any:
        """Send the cart to the account with ``submit`` and forget it locally.

        ``submit`` receives the ``/cart/sync`` body and should raise if the
        server did not accept it; the local cart is kept in that case so the
        next login can try again.
        """
        if not self._items:
            return None
        try:
            result = submit(self.sync_payload())
        except Exception:
            logger.exception("Failed to sync guest cart, keeping %d local lines", len(self._items))
            raise
        self.clear()
        return result
