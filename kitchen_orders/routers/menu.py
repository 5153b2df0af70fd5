from fastapi import APIRouter

from kitchen_orders.core.menu import MENU_CATALOG

router = APIRouter(prefix="/api/menu", tags=["menu"])


@router.get("")
def list_menu():
    return {
        "items": [item.to_dict() for item in MENU_CATALOG.menu_items() if item.available],
        "additionals": [item.to_dict() for item in MENU_CATALOG.additional_items()],
    }
