"""Sync step for customers (``ar_customer``)."""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from smlmarketsync.changes import (
    DELETE_BATCH_SIZE,
    ChangeSet,
    SyncBatchError,
    delete_sync_records,
    read_sync_entries,
)
from smlmarketsync.client import APIClient
from smlmarketsync.database import TrackedTable
from smlmarketsync.records import ActiveCode, CustomerItem
from smlmarketsync.remote_sync import sync_customer_data

log = logging.getLogger(__name__)

_CUSTOMER_ROW = text(
    "SELECT roworder, code, price_level FROM ar_customer "
    "WHERE roworder = :ref AND code IS NOT NULL AND code != ''"
)


class CustomerSyncStep:
    """Carries logged ``ar_customer`` changes over to the remote database."""

    def __init__(self, engine: Engine, client: APIClient | None = None) -> None:
        self.engine = engine
        self.client = client if client is not None else APIClient()

    def fetch_changes(self) -> ChangeSet:
        """Read the change log and the current customer rows it points at."""
        changes = ChangeSet()
        entries = read_sync_entries(self.engine, TrackedTable.CUSTOMER)
        with self.engine.connect() as conn:
            for sync_id, ref, code in entries:
                changes.sync_ids.append(sync_id)
                if code == ActiveCode.DELETE:
                    changes.add(code, ref)
                    continue
                log.debug("reading customer row for roworder %d", ref)
                try:
                    row = conn.execute(_CUSTOMER_ROW, {"ref": ref}).first()
                except SQLAlchemyError as exc:
                    raise RuntimeError(f"error scanning customer row: {exc}") from exc
                if row is None:
                    log.warning("no customer row for roworder %d", ref)
                    continue
                if row.roworder is None:
                    raise RuntimeError(
                        f"error scanning customer row: NULL roworder for {ref}"
                    )
                item = CustomerItem(
                    row_order_ref=int(row.roworder),
                    code=str(row.code),
                    price_level="" if row.price_level is None else str(row.price_level),
                )
                changes.add(code, item.row_order_ref, item.as_dict())
        return changes

    def execute(self) -> ChangeSet:
        """Run the customer sync and return the changes it handled."""
        log.info("syncing customers with the API")
        self.client.create_customer_table()
        changes = self.fetch_changes()
        if not changes.sync_ids:
            log.info("no customer changes in the local database")
            return changes
        try:
            delete_sync_records(self.engine, changes.sync_ids, DELETE_BATCH_SIZE)
        except SyncBatchError as exc:
            log.warning("%s", exc)
        sync_customer_data(self.client, changes.inserts, changes.updates, changes.deletes)
        log.info("customer sync finished")
        return changes