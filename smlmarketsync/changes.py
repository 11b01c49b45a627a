"""Reading the local change log and clearing entries once they are handled."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from smlmarketsync.database import SYNC_TABLE, TrackedTable
from smlmarketsync.records import ActiveCode

log = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 100
_BATCH_PAUSE = 0.1

_SYNC_ENTRIES = text(
    f"SELECT id, row_order_ref, active_code FROM {SYNC_TABLE} "
    "WHERE table_id = :table_id ORDER BY active_code DESC"
)
_DELETE_SYNC = text(f"DELETE FROM {SYNC_TABLE} WHERE id IN :ids").bindparams(
    bindparam("ids", expanding=True)
)


@dataclass
class ChangeSet:
    """Changes of one tracked table, sorted into what the server must do.

    An update is sent as a delete of the old row followed by an insert.
    """

    sync_ids: list[int] = field(default_factory=list)
    inserts: list[dict[str, Any]] = field(default_factory=list)
    updates: list[dict[str, Any]] = field(default_factory=list)
    deletes: list[Any] = field(default_factory=list)

    def add(
        self,
        active_code: int,
        row_order_ref: Any,
        record: dict[str, Any] | None = None,
    ) -> None:
        """File one logged change; unknown codes are ignored."""
        try:
            code = ActiveCode(active_code)
        except ValueError:
            return
        if code is ActiveCode.DELETE:
            self.deletes.append(row_order_ref)
            return
        if record is None:
            raise ValueError("a record is needed for an insert or an update")
        if code is ActiveCode.UPDATE:
            self.deletes.append(row_order_ref)
        self.inserts.append(record)


class SyncBatchError(Exception):
    """Some batches of change log entries could not be deleted."""

    def __init__(self, failed_batches: int, batch_count: int, deleted: int) -> None:
        super().__init__(
            f"{failed_batches}/{batch_count} batches failed to delete from {SYNC_TABLE}"
        )
        self.failed_batches = failed_batches
        self.batch_count = batch_count
        self.deleted = deleted


def read_sync_entries(engine: Engine, table: TrackedTable) -> list[tuple[int, int, int]]:
    """Return ``(id, row_order_ref, active_code)`` for a table, deletes first."""
    try:
        with engine.connect() as conn:
            rows = conn.execute(_SYNC_ENTRIES, {"table_id": table.table_id}).all()
    except SQLAlchemyError as exc:
        raise RuntimeError(f"error executing {table.stem} sync query: {exc}") from exc
    entries = []
    for row in rows:
        if any(value is None for value in row):
            raise RuntimeError(f"error scanning {table.stem} sync row: NULL value in {tuple(row)}")
        entries.append((int(row[0]), int(row[1]), int(row[2])))
    return entries


def delete_sync_records(
    engine: Engine, sync_ids: Iterable[int], batch_size: int = DELETE_BATCH_SIZE
) -> int:
    """Delete handled change log entries in batches; returns rows deleted.

    Every batch is tried; if any failed, SyncBatchError is raised afterwards.
    """
    ids = list(sync_ids)
    if not ids:
        log.info("no entries to delete from %s", SYNC_TABLE)
        return 0
    if batch_size <= 0:
        raise ValueError("batch size must be positive")

    batch_count = (len(ids) + batch_size - 1) // batch_size
    log.info("deleting %d entries from %s in batches of %d", len(ids), SYNC_TABLE, batch_size)
    deleted = 0
    failed = 0
    for number, start in enumerate(range(0, len(ids), batch_size), 1):
        batch = ids[start:start + batch_size]
        try:
            with engine.begin() as conn:
                result = conn.execute(_DELETE_SYNC, {"ids": batch})
                affected = result.rowcount
        except SQLAlchemyError as exc:
            log.error("cannot delete batch %d from %s: %s", number, SYNC_TABLE, exc)
            failed += 1
            continue
        if affected is None or affected < 0:
            affected = len(batch)
        deleted += affected
        log.info("deleted batch %d/%d from %s: %d rows", number, batch_count, SYNC_TABLE, affected)
        if number < batch_count:
            time.sleep(_BATCH_PAUSE)

    if failed:
        log.warning(
            "deleted %d/%d entries from %s (%d/%d batches succeeded)",
            deleted, len(ids), SYNC_TABLE, batch_count - failed, batch_count,
        )
        raise SyncBatchError(failed, batch_count, deleted)
    log.info("deleted %d entries from %s (%d batches)", deleted, SYNC_TABLE, batch_count)
    return deleted