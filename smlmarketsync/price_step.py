"""Sync step for item prices (``ic_inventory_price``)."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from smlmarketsync.catalog_sync import sync_price_data
from smlmarketsync.changes import (
    DELETE_BATCH_SIZE,
    ChangeSet,
    SyncBatchError,
    delete_sync_records,
    read_sync_entries,
)
from smlmarketsync.client import APIClient
from smlmarketsync.database import TrackedTable
from smlmarketsync.records import ActiveCode, PriceItem

log = logging.getLogger(__name__)

_PRICE_ROW = text(
    "SELECT roworder, ic_code, unit_code, from_qty, to_qty, from_date, to_date, "
    "sale_type, sale_price1, status, price_type, cust_code, "
    "sale_price2, cust_group_1, price_mode "
    "FROM ic_inventory_price WHERE roworder = :ref"
)
_NULLABLE = frozenset(
    {"from_qty", "to_qty", "from_date", "to_date", "sale_price1", "sale_price2"}
)


def _to_float(value: Any) -> float:
    """A numeric column as float; NULL or unparsable values give 0."""
    if value is None:
        return 0.0
    try:
        return float(str(value))
    except ValueError:
        return 0.0


def _to_date(value: Any) -> str:
    return "" if value is None else str(value)


class PriceSyncStep:
    """Carries logged ``ic_inventory_price`` changes over to the remote database."""

    def __init__(self, engine: Engine, client: APIClient | None = None) -> None:
        self.engine = engine
        self.client = client if client is not None else APIClient()

    def _price(self, conn: Any, ref: int) -> PriceItem:
        try:
            row = conn.execute(_PRICE_ROW, {"ref": ref}).first()
        except SQLAlchemyError as exc:
            raise RuntimeError(f"error scanning price row: {exc}") from exc
        if row is None:
            raise RuntimeError(f"error scanning price row: no row for roworder {ref}")
        values = row._mapping
        missing = [name for name, value in values.items() if value is None and name not in _NULLABLE]
        if missing:
            raise RuntimeError(
                f"error scanning price row: NULL in {', '.join(missing)} for roworder {ref}"
            )
        return PriceItem(
            row_order_ref=int(values["roworder"]),
            ic_code=str(values["ic_code"]),
            unit_code=str(values["unit_code"]),
            from_qty=_to_float(values["from_qty"]),
            to_qty=_to_float(values["to_qty"]),
            from_date=_to_date(values["from_date"]),
            to_date=_to_date(values["to_date"]),
            sale_type=str(values["sale_type"]),
            sale_price1=_to_float(values["sale_price1"]),
            status=str(values["status"]),
            price_type=str(values["price_type"]),
            cust_code=str(values["cust_code"]),
            sale_price2=_to_float(values["sale_price2"]),
            cust_group_1=str(values["cust_group_1"]),
            price_mode=str(values["price_mode"]),
        )

    def fetch_changes(self) -> ChangeSet:
        """Read the change log and the current price rows it points at.

        A logged insert or update whose row is gone raises RuntimeError.
        """
        changes = ChangeSet()
        entries = read_sync_entries(self.engine, TrackedTable.PRICE)
        with self.engine.connect() as conn:
            for sync_id, ref, code in entries:
                changes.sync_ids.append(sync_id)
                if code == ActiveCode.DELETE:
                    changes.add(code, ref)
                    continue
                log.debug("reading price row for roworder %d", ref)
                changes.add(code, ref, self._price(conn, ref).as_dict())
        return changes

    def execute(self) -> ChangeSet:
        """Run the price sync and return the changes it handled."""
        log.info("syncing prices with the API")
        self.client.create_price_table()
        changes = self.fetch_changes()
        if not changes.sync_ids:
            log.info("no price changes in the local database")
            return changes
        try:
            delete_sync_records(self.engine, changes.sync_ids, DELETE_BATCH_SIZE)
        except SyncBatchError as exc:
            log.warning("%s", exc)
        sync_price_data(self.client, None, changes.inserts, changes.updates, changes.deletes)
        log.info("price sync finished")
        return changes