"""
Item diffing for order edits.

Items are matched by ``catalog_id``. A quantity change is an edit; a
catalog id on one side only is an addition or a removal.
"""

from dataclasses import dataclass, field
from typing import Iterable, List

from floorops.core.exceptions import InvalidOrderEdit
from floorops.schemas import ItemChange, OrderItem


@dataclass
class ItemDiff:
    added: List[OrderItem] = field(default_factory=list)
    removed: List[OrderItem] = field(default_factory=list)
    edited: List[ItemChange] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.edited)


def ensure_unique_catalog_ids(items: Iterable[OrderItem]) -> None:
    seen = set()
    for item in items:
        if item.catalog_id in seen:
            raise InvalidOrderEdit(f"Duplicate catalog id in item list: {item.catalog_id}")
        seen.add(item.catalog_id)


def diff_items(current: List[OrderItem], new: List[OrderItem]) -> ItemDiff:
    """
    Categorize the change from ``current`` to ``new``.

    Example:
        [a×2, b×1] → [a×3, c×1] gives added=[c×1], removed=[b×1],
        edited=[a×2 → a×3].
    """
    ensure_unique_catalog_ids(new)

    before = {item.catalog_id: item for item in current}
    after = {item.catalog_id: item for item in new}

    diff = ItemDiff()
    for item in new:
        original = before.get(item.catalog_id)
        if original is None:
            diff.added.append(item)
        elif original.quantity != item.quantity:
            diff.edited.append(ItemChange(before=original, after=item))
    diff.removed = [item for item in current if item.catalog_id not in after]
    return diff


def merge_items(current: List[OrderItem], extra: List[OrderItem]) -> List[OrderItem]:
    """
    Add ``extra`` to ``current``: known catalog ids gain quantity, new ones
    are appended in order.
    """
    merged = {item.catalog_id: item for item in current}
    order = [item.catalog_id for item in current]
    for item in extra:
        existing = merged.get(item.catalog_id)
        if existing is None:
            merged[item.catalog_id] = item
            order.append(item.catalog_id)
        else:
            merged[item.catalog_id] = existing.model_copy(
                update={"quantity": existing.quantity + item.quantity}
            )
    return [merged[catalog_id] for catalog_id in order]


def calculate_order_totals(items: List[OrderItem]) -> dict[str, float]:
    """Calculate order subtotal and total (no tax or fees on the floor)."""
    subtotal = round(sum(item.line_total for item in items), 2)
    return {
        "subtotal": subtotal,
        "total": subtotal,
    }
