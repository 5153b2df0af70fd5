from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

INGREDIENTS = ("ayam", "jamur")


@dataclass(frozen=True)
class MenuItem:
    id: str
    name: str
    pack_size: int
    variant: str
    composition: Mapping[str, int] = field(default_factory=dict)
    price: int = 0
    prep_time: int = 0
    available: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "pack_size": self.pack_size,
            "variant": self.variant,
            "composition": dict(self.composition),
            "price": self.price,
            "prep_time": self.prep_time,
            "available": self.available,
        }


@dataclass(frozen=True)
class AdditionalItem:
    id: str
    name: str
    price: int

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "price": self.price}


def _item(item_id: str, name: str, pack_size: int, variant: str, ayam: int, jamur: int, price: int, prep_time: int) -> MenuItem:
    return MenuItem(
        id=item_id,
        name=name,
        pack_size=pack_size,
        variant=variant,
        composition=MappingProxyType({"ayam": ayam, "jamur": jamur}),
        price=price,
        prep_time=prep_time,
    )


MENU_ITEMS: tuple[MenuItem, ...] = (
    # Pack 4 & 6
    _item("pack_4_ayam", "Pack 4 - Demen Ayam", 4, "ayam", 4, 0, 14000, 10),
    _item("pack_4_jamur", "Pack 4 - Demen Jamur", 4, "jamur", 0, 4, 16000, 10),
    _item("pack_4_mix", "Pack 4 - Mix", 4, "mix", 2, 2, 15000, 10),
    _item("pack_6_ayam", "Pack 6 - Demen Ayam", 6, "ayam", 6, 0, 22000, 12),
    _item("pack_6_jamur", "Pack 6 - Demen Jamur", 6, "jamur", 0, 6, 24000, 12),
    _item("pack_6_mix", "Pack 6 - Mix", 6, "mix", 3, 3, 23000, 12),
    # Dimsum Party (isi 16)
    _item("party_16_ayam", "Dimsum Party (16) - Ayam", 16, "ayam", 16, 0, 62000, 20),
    _item("party_16_jamur", "Dimsum Party (16) - Jamur", 16, "jamur", 0, 16, 65000, 20),
    _item("party_16_mix", "Dimsum Party (16) - Mix", 16, "mix", 8, 8, 63000, 20),
    # Bouquet (isi 14)
    _item("bouquet_14", "Dimsum Bouquet (14)", 14, "mix", 7, 7, 100000, 30),
)

ADDITIONAL_ITEMS: tuple[AdditionalItem, ...] = (
    AdditionalItem("potato_crunch", "Potato Crunch", 2500),
    AdditionalItem("chili_oil_25ml", "Chili Oil 25 ml", 2500),
    AdditionalItem("chili_oil_5ml", "Chili Oil 5 ml", 500),
)


class MenuCatalog:
    """Catálogo somente leitura usado para calcular consumo de ingredientes."""

    def __init__(
        self,
        items: tuple[MenuItem, ...] = MENU_ITEMS,
        additionals: tuple[AdditionalItem, ...] = ADDITIONAL_ITEMS,
    ) -> None:
        self._items = {item.id: item for item in items}
        self._additionals = {item.id: item for item in additionals}

    def get_menu_item(self, menu_id: str | None) -> Optional[MenuItem]:
        if not menu_id:
            return None
        return self._items.get(menu_id)

    def get_additional_item(self, additional_id: str | None) -> Optional[AdditionalItem]:
        if not additional_id:
            return None
        return self._additionals.get(additional_id)

    def menu_items(self) -> list[MenuItem]:
        return list(self._items.values())

    def additional_items(self) -> list[AdditionalItem]:
        return list(self._additionals.values())

    def ingredients(self) -> list[str]:
        seen: list[str] = list(INGREDIENTS)
        for item in self._items.values():
            for ingredient in item.composition:
                if ingredient not in seen:
                    seen.append(ingredient)
        return seen


MENU_CATALOG = MenuCatalog()
