"""Records exchanged between the local database and the remote API."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import IntEnum
from typing import Any


class ActiveCode(IntEnum):
    """Kind of change logged in ``sml_market_sync.active_code``."""

    INSERT = 1
    UPDATE = 2
    DELETE = 3


@dataclass(frozen=True)
class InventoryItem:
    """A row of ``ic_inventory`` bound for the remote table."""

    row_order_ref: int
    ic_code: str
    name: str = ""
    item_type: int = 0
    unit_standard_code: str = ""

    def as_dict(self) -> dict[str, Any]:
        """Return the mapping sent to the API (the code goes under ``code``)."""
        return {
            "code": self.ic_code,
            "name": self.name,
            "item_type": self.item_type,
            "unit_standard_code": self.unit_standard_code,
            "row_order_ref": self.row_order_ref,
        }


@dataclass(frozen=True)
class BarcodeItem:
    """A row of ``ic_inventory_barcode`` with resolved item and unit names."""

    row_order_ref: int
    ic_code: str
    barcode: str
    name: str = ""
    unit_code: str = ""
    unit_name: str = ""

    def as_dict(self) -> dict[str, Any]:
        """Return the mapping sent to the API."""
        return asdict(self)


@dataclass(frozen=True)
class BalanceItem:
    """Stock balance of one item in one warehouse and unit."""

    ic_code: str
    warehouse: str
    unit_code: str
    balance_qty: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        """Return the mapping sent to the API (unit under ``ic_unit_code``)."""
        return {
            "ic_code": self.ic_code,
            "warehouse": self.warehouse,
            "ic_unit_code": self.unit_code,
            "balance_qty": self.balance_qty,
        }


@dataclass(frozen=True)
class CustomerItem:
    """A row of ``ar_customer``."""

    row_order_ref: int
    code: str
    price_level: str = ""

    def as_dict(self) -> dict[str, Any]:
        """Return the mapping sent to the API."""
        return asdict(self)


@dataclass(frozen=True)
class PriceItem:
    """A row of ``ic_inventory_price``."""

    row_order_ref: int
    ic_code: str
    unit_code: str
    from_qty: float = 0.0
    to_qty: float = 0.0
    from_date: str = ""
    to_date: str = ""
    sale_type: str = ""
    sale_price1: float = 0.0
    status: str = ""
    price_type: str = ""
    cust_code: str = ""
    sale_price2: float = 0.0
    cust_group_1: str = ""
    price_mode: str = ""

    def as_dict(self) -> dict[str, Any]:
        """Return the mapping sent to the API."""
        return asdict(self)