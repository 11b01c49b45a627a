"""Pushing price and inventory changes to the remote database in batches."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping
from typing import Any

from smlmarketsync.client import APIClient, APIError

log = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 1000
INSERT_BATCH_SIZE = 100
SYNC_TABLE = "sml_market_sync"
_BATCH_PAUSE = 0.1

_PRICE_COLUMNS = (
    "row_order_ref, ic_code, unit_code, from_qty, to_qty, from_date, to_date, "
    "sale_type, sale_price1, status, price_type, cust_code, "
    "sale_price2, cust_group_1, price_mode"
)
_INVENTORY_COLUMNS = "code, name, unit_standard_code, item_type, row_order_ref"


def _render(value: Any) -> str:
    """Render a value the way it is written into SQL text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    return str(value)


def _quote(value: str) -> str:
    return value.replace("'", "''")


def _as_int(value: Any) -> int:
    """Whole number of a numeric value; anything else counts as 0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def _batches(items: list[Any], size: int) -> Iterable[tuple[int, list[Any]]]:
    if size <= 0:
        raise ValueError("batch size must be positive")
    for start in range(0, len(items), size):
        yield start, items[start:start + size]


def parse_float_value(value: Any) -> str:
    """Render a numeric column; missing or empty values become ``0``."""
    if value is None:
        return "0"
    if isinstance(value, float):
        return f"{value:.6f}"
    if isinstance(value, str):
        return "0" if value in ("", "<nil>") else value
    return _render(value)


def parse_string_value(value: Any) -> str:
    """Render a text column; a missing value becomes the empty string."""
    return "" if value is None else _render(value)


def nullable_date(value: str) -> str:
    """Quote a date, or give ``NULL`` when there is none."""
    if value in ("", "<nil>"):
        return "NULL"
    return f"'{value}'"


def price_values(item: Mapping[str, Any]) -> str:
    """Build the VALUES tuple for one ``ic_inventory_price`` row.

    Raises ValueError when ic_code, unit_code or row_order_ref is missing.
    """
    if item.get("ic_code") is None or item.get("unit_code") is None:
        raise ValueError("missing ic_code or unit_code")
    if item.get("row_order_ref") is None:
        raise ValueError("missing row_order_ref")

    row_order_ref = _render(item["row_order_ref"])
    ic_code = _quote(_render(item["ic_code"]))
    unit_code = _quote(_render(item["unit_code"]))
    from_qty = parse_float_value(item.get("from_qty"))
    to_qty = parse_float_value(item.get("to_qty"))
    from_date = nullable_date(parse_string_value(item.get("from_date")))
    to_date = nullable_date(parse_string_value(item.get("to_date")))
    sale_type = _quote(parse_string_value(item.get("sale_type")))
    sale_price1 = parse_float_value(item.get("sale_price1"))
    status = _quote(parse_string_value(item.get("status")))
    price_type = _quote(parse_string_value(item.get("price_type")))
    cust_code = _quote(parse_string_value(item.get("cust_code")))
    sale_price2 = parse_float_value(item.get("sale_price2"))
    cust_group_1 = _quote(parse_string_value(item.get("cust_group_1")))
    price_mode = _quote(parse_string_value(item.get("price_mode")))

    return (
        f"({row_order_ref}, '{ic_code}', '{unit_code}', {from_qty}, {to_qty}, "
        f"{from_date}, {to_date}, '{sale_type}', {sale_price1}, '{status}', "
        f"'{price_type}', '{cust_code}', {sale_price2}, '{cust_group_1}', '{price_mode}')"
    )


def inventory_values(item: Mapping[str, Any]) -> str:
    """Build the VALUES tuple for one ``ic_inventory`` row.

    Raises ValueError when the code is missing. Non-numeric item_type and
    row_order_ref values count as 0.
    """
    if item.get("code") is None:
        raise ValueError("missing code")
    code = _quote(_render(item["code"]))
    name = _quote(parse_string_value(item.get("name")))
    unit_standard_code = _quote(parse_string_value(item.get("unit_standard_code")))
    item_type = _as_int(item.get("item_type"))
    row_order_ref = _as_int(item.get("row_order_ref"))
    return f"('{code}', '{name}', '{unit_standard_code}', {item_type}, {row_order_ref})"


def delete_from_table(
    client: APIClient,
    table_name: str,
    id_column: str,
    ids: Iterable[Any],
    quoted: bool,
) -> int:
    """Delete rows whose ``id_column`` is among ``ids``, in batches of 1000.

    A failed batch is logged and skipped; returns how many ids were deleted.
    """
    ids = list(ids)
    if not ids:
        return 0
    log.info("deleting %d rows from %s", len(ids), table_name)
    deleted = 0
    batch_count = (len(ids) + DELETE_BATCH_SIZE - 1) // DELETE_BATCH_SIZE
    for number, (start, batch) in enumerate(_batches(ids, DELETE_BATCH_SIZE), 1):
        if quoted:
            listed = ",".join(f"'{_quote(_render(i))}'" for i in batch)
        else:
            listed = ",".join(_render(i) for i in batch)
        query = f"DELETE FROM {table_name} WHERE {id_column} IN ({listed})"
        try:
            response = client.execute_command(query)
        except APIError as exc:
            log.error("cannot delete batch %d from %s: %s", number, table_name, exc)
        else:
            if response.success:
                deleted += len(batch)
                log.info("deleted batch %d/%d: %d rows", number, batch_count, len(batch))
            else:
                log.error("deleting batch %d from %s failed: %s",
                          number, table_name, response.message)
        if number < batch_count:
            time.sleep(_BATCH_PAUSE)
    log.info("deleted %d of %d rows from %s", deleted, len(ids), table_name)
    return deleted


def _insert_batches(
    client: APIClient,
    data: Iterable[Any],
    batch_size: int,
    table: str,
    columns: str,
    build: Any,
) -> int:
    data = list(data)
    if not data:
        return 0
    log.info("inserting %d rows into %s (batches of %d)", len(data), table, batch_size)
    inserted = 0
    batches = list(_batches(data, batch_size))
    for number, (_, batch) in enumerate(batches, 1):
        values = []
        for item in batch:
            if not isinstance(item, Mapping):
                log.warning("skipping item that is not a mapping: %r", item)
                continue
            try:
                values.append(build(item))
            except ValueError as exc:
                log.warning("skipping item: %s - %r", exc, item)
        if values:
            query = f"INSERT INTO {table} ({columns}) VALUES " + ",".join(values)
            try:
                response = client.execute_command(query)
            except APIError as exc:
                log.error("cannot insert batch %d into %s: %s", number, table, exc)
            else:
                if response.success:
                    inserted += len(values)
                    log.info("inserted batch %d: %d rows", number, len(values))
                else:
                    log.error("inserting batch %d into %s failed: %s",
                              number, table, response.message)
        if number < len(batches):
            time.sleep(_BATCH_PAUSE)
    log.info("inserted %d of %d rows into %s", inserted, len(data), table)
    return inserted


def insert_price_batches(
    client: APIClient, data: Iterable[Any], batch_size: int = INSERT_BATCH_SIZE
) -> int:
    """Insert price rows in batches; returns how many rows went in."""
    return _insert_batches(
        client, data, batch_size, "ic_inventory_price", _PRICE_COLUMNS, price_values
    )


def insert_inventory_batches(
    client: APIClient, data: Iterable[Any], batch_size: int = INSERT_BATCH_SIZE
) -> int:
    """Insert inventory rows in batches; returns how many rows went in."""
    return _insert_batches(
        client, data, batch_size, "ic_inventory", _INVENTORY_COLUMNS, inventory_values
    )


def sync_price_data(
    client: APIClient,
    sync_ids: Iterable[int] | None,
    inserts: Iterable[Any],
    updates: Iterable[Any],
    deletes: Iterable[Any],
) -> int:
    """Apply price changes remotely: drop sync ids, delete, then insert.

    Updated rows arrive as a delete plus an insert. Returns the inserted count.
    """
    sync_ids = list(sync_ids or [])
    inserts, updates, deletes = list(inserts), list(updates), list(deletes)
    if not (inserts or updates or deletes or sync_ids):
        log.info("no price changes to apply")
        return 0

    if sync_ids:
        delete_from_table(client, SYNC_TABLE, "id", sync_ids, False)
    if deletes:
        refs = [_render(ref) for ref in deletes]
        delete_from_table(client, "ic_inventory_price", "row_order_ref", refs, False)
    inserted = insert_price_batches(client, inserts, INSERT_BATCH_SIZE) if inserts else 0

    log.info(
        "price sync: %d sync ids removed, %d deleted, %d/%d inserted",
        len(sync_ids), len(deletes), inserted, len(inserts),
    )
    return inserted


def sync_inventory_data(
    client: APIClient,
    inserts: Iterable[Any],
    updates: Iterable[Any],
    deletes: Iterable[Any],
) -> int:
    """Apply inventory changes remotely: delete, then insert.

    Returns the inserted count.
    """
    inserts, updates, deletes = list(inserts), list(updates), list(deletes)
    if not (inserts or updates or deletes):
        log.info("no inventory changes to apply")
        return 0

    if deletes:
        refs = [_render(ref) for ref in deletes]
        delete_from_table(client, "ic_inventory", "row_order_ref", refs, True)
    inserted = insert_inventory_batches(client, inserts, INSERT_BATCH_SIZE) if inserts else 0

    log.info(
        "inventory sync: %d deleted, %d/%d inserted",
        len(deletes), inserted, len(inserts),
    )
    return inserted