from __future__ import annotations

from dataclasses import dataclass

from services.storefront.app.models.order import CatalogItem


@dataclass(slots=True)
class CartLine:
    item: CatalogItem
    quantity: int
    allow_substitution: bool = False

    @property
    def line_total_cents(self) -> int:
        return self.item.unit_price_cents * self.quantity


class Cart:
    """Client-local cart for one browsing session. Never persisted."""

    def __init__(self) -> None:
        self._lines: dict[str, CartLine] = {}
        self.allow_substitutions_for_all = False

    def __len__(self) -> int:
        return len(self._lines)

    def __bool__(self) -> bool:
        return bool(self._lines)

    @property
    def lines(self) -> list[CartLine]:
        return list(self._lines.values())

    def add(self, item: CatalogItem, quantity: int = 1) -> None:
        existing = self._lines.get(item.id)
        if existing is not None:
            existing.quantity += quantity
            return
        self._lines[item.id] = CartLine(item=item, quantity=quantity)

    def update_quantity(self, item_id: str, delta: int) -> None:
        line = self._lines.get(item_id)
        if line is None:
            return
        new_qty = line.quantity + delta
        if new_qty > 0:
            line.quantity = new_qty
        else:
            del self._lines[item_id]

    def remove(self, item_id: str) -> None:
        self._lines.pop(item_id, None)

    def set_allow_substitution(self, item_id: str, allow: bool) -> None:
        line = self._lines.get(item_id)
        if line is not None:
            line.allow_substitution = allow

    def quantity_of(self, item_id: str) -> int:
        line = self._lines.get(item_id)
        return line.quantity if line else 0

    def total_cents(self) -> int:
        return sum(line.line_total_cents for line in self._lines.values())

    def clear(self) -> None:
        self._lines.clear()
