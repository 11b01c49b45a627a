"""Sync steps for products (``ic_inventory``) and their barcodes."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine, Row
from sqlalchemy.exc import SQLAlchemyError

from smlmarketsync.catalog_sync import sync_inventory_data
from smlmarketsync.changes import (
    DELETE_BATCH_SIZE,
    ChangeSet,
    SyncBatchError,
    delete_sync_records,
    read_sync_entries,
)
from smlmarketsync.client import APIClient, APIError
from smlmarketsync.database import TrackedTable
from smlmarketsync.records import ActiveCode, BarcodeItem, InventoryItem
from smlmarketsync.remote_sync import sync_product_barcode_data

log = logging.getLogger(__name__)

_INVENTORY_ROW = text(
    "SELECT roworder, code, name_1, item_type, unit_standard "
    "FROM ic_inventory WHERE roworder = :ref"
)
_BARCODE_ROW = text(
    "SELECT roworder, ic_code, barcode, "
    "coalesce((SELECT name_1 FROM ic_inventory WHERE code = ic_code), 'XX') AS name, "
    "unit_code, "
    "coalesce((SELECT name_1 FROM ic_unit WHERE code = unit_code), 'XX') AS unit_name "
    "FROM ic_inventory_barcode WHERE roworder = :ref"
)


def _fetch_row(conn: Connection, query: Any, ref: int, what: str) -> Row | None:
    try:
        row = conn.execute(query, {"ref": ref}).first()
    except SQLAlchemyError as exc:
        raise RuntimeError(f"error scanning {what} row: {exc}") from exc
    if row is not None and any(value is None for value in row):
        raise RuntimeError(f"error scanning {what} row: NULL value for roworder {ref}")
    return row


class ProductSyncStep:
    """Carries logged ``ic_inventory`` changes over to the remote database."""

    def __init__(self, engine: Engine, client: APIClient | None = None) -> None:
        self.engine = engine
        self.client = client if client is not None else APIClient()

    def fetch_changes(self) -> ChangeSet:
        """Read the change log and the current rows it points at."""
        changes = ChangeSet()
        entries = read_sync_entries(self.engine, TrackedTable.INVENTORY)
        with self.engine.connect() as conn:
            for sync_id, ref, code in entries:
                changes.sync_ids.append(sync_id)
                if code == ActiveCode.DELETE:
                    changes.add(code, ref)
                    continue
                row = _fetch_row(conn, _INVENTORY_ROW, ref, "inventory")
                if row is None:
                    log.warning("no inventory row for roworder %d", ref)
                    continue
                item = InventoryItem(
                    row_order_ref=int(row.roworder),
                    ic_code=str(row.code),
                    name=str(row.name_1),
                    item_type=int(row.item_type),
                    unit_standard_code=str(row.unit_standard),
                )
                record = item.as_dict()
                record["row_order_ref"] = ref
                changes.add(code, ref, record)
        return changes

    def execute(self) -> ChangeSet:
        """Run the product sync and return the changes it handled."""
        log.info("syncing products with the API")
        self.client.create_inventory_table()
        changes = self.fetch_changes()
        if not changes.sync_ids:
            log.info("no product changes in the local database")
            return changes
        try:
            delete_sync_records(self.engine, changes.sync_ids, DELETE_BATCH_SIZE)
        except SyncBatchError as exc:
            log.warning("%s", exc)
        sync_inventory_data(self.client, changes.inserts, changes.updates, changes.deletes)
        log.info("product sync finished")
        return changes


class ProductBarcodeSyncStep:
    """Carries logged ``ic_inventory_barcode`` changes over to the remote database."""

    def __init__(self, engine: Engine, client: APIClient | None = None) -> None:
        self.engine = engine
        self.client = client if client is not None else APIClient()

    def fetch_changes(self) -> ChangeSet:
        """Read the change log and the current barcode rows it points at."""
        changes = ChangeSet()
        entries = read_sync_entries(self.engine, TrackedTable.INVENTORY_BARCODE)
        with self.engine.connect() as conn:
            for sync_id, ref, code in entries:
                changes.sync_ids.append(sync_id)
                if code == ActiveCode.DELETE:
                    changes.add(code, ref)
                    continue
                row = _fetch_row(conn, _BARCODE_ROW, ref, "ProductBarcode")
                if row is None:
                    log.warning("no ProductBarcode row for roworder %d", ref)
                    continue
                item = BarcodeItem(
                    row_order_ref=int(row.roworder),
                    ic_code=str(row.ic_code),
                    barcode=str(row.barcode),
                    name=str(row.name),
                    unit_code=str(row.unit_code),
                    unit_name=str(row.unit_name),
                )
                changes.add(code, item.row_order_ref, item.as_dict())
        return changes

    def execute(self) -> ChangeSet:
        """Run the barcode sync and return the changes it handled."""
        log.info("syncing ProductBarcode with the API")
        self.client.create_inventory_barcode_table()
        changes = self.fetch_changes()
        if not changes.sync_ids:
            log.info("no ProductBarcode changes in the local database")
            return changes
        try:
            delete_sync_records(self.engine, changes.sync_ids, DELETE_BATCH_SIZE)
        except SyncBatchError as exc:
            log.warning("%s", exc)
        try:
            sync_product_barcode_data(
                self.client, changes.inserts, changes.updates, changes.deletes
            )
        except APIError as exc:
            log.warning("ProductBarcode sync incomplete: %s", exc)
        log.info("ProductBarcode sync finished")
        return changes