"""Kitchen sequencing rules for menu categories.

Lower ranks are fired first: cold starters and drinks need no cooking and would
warm up while waiting, mains come later and desserts go out last.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from kds.domain.order.entities import OrderItem

DEFAULT_PRIORITY_RANK = 5


class ThermalClass(str, Enum):
    COLD = "cold"
    HOT = "hot"
    DRINK = "drink"
    DESSERT = "dessert"


@dataclass(frozen=True)
class CategoryRule:
    keyword: str
    priority_rank: int


@dataclass(frozen=True)
class CategoryClass:
    priority_rank: int
    thermal_class: ThermalClass


CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule("Soğuk Mezeler", 1),
    CategoryRule("Soğuk İçecekler", 1),
    CategoryRule("Biralar", 1),
    CategoryRule("Sıcak İçecekler", 2),
    CategoryRule("Salatalar", 2),
    CategoryRule("Çorbalar", 3),
    CategoryRule("Sıcak Mezeler", 4),
    CategoryRule("Ara Sıcaklar", 5),
    CategoryRule("Makarnalar", 6),
    CategoryRule("Pizzalar", 6),
    CategoryRule("Et Yemekleri", 7),
    CategoryRule("Deniz Ürünleri", 7),
    CategoryRule("Tavuk Yemekleri", 7),
    CategoryRule("Kebaplar", 7),
    CategoryRule("Tatlılar", 8),
)

# Checked in this order; drink keywords win over cold ones ("Soğuk İçecekler").
_THERMAL_KEYWORDS: tuple[tuple[ThermalClass, tuple[str, ...]], ...] = (
    (ThermalClass.DRINK, ("içecek", "bira", "şarap", "rakı", "votka", "viski")),
    (ThermalClass.COLD, ("soğuk", "salata")),
    (ThermalClass.DESSERT, ("tatlı", "dondurma")),
)


def _fold(value: str) -> str:
    # str.lower() turns "İ" into "i" + U+0307, which breaks substring matches.
    return value.replace("İ", "i").lower()


def priority_rank(category: str | None) -> int:
    if not category:
        return DEFAULT_PRIORITY_RANK
    folded = _fold(category)
    for rule in CATEGORY_RULES:
        if _fold(rule.keyword) in folded:
            return rule.priority_rank
    return DEFAULT_PRIORITY_RANK


def thermal_class(category: str | None) -> ThermalClass:
    if not category:
        return ThermalClass.HOT
    folded = _fold(category)
    for thermal, keywords in _THERMAL_KEYWORDS:
        if any(keyword in folded for keyword in keywords):
            return thermal
    return ThermalClass.HOT


def classify_category(category: str | None) -> CategoryClass:
    return CategoryClass(
        priority_rank=priority_rank(category),
        thermal_class=thermal_class(category),
    )


def sort_ticket_items(items: Iterable[OrderItem]) -> list[OrderItem]:
    """Return items in firing order; equal ranks keep their ticket order."""
    return sorted(items, key=lambda item: priority_rank(item.category))
