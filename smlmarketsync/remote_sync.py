"""Pushing barcode, customer and stock balance changes to the remote database."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Tuple

from smlmarketsync.client import APIClient, APIError

log = logging.getLogger(__name__)

BALANCE_PAGE_SIZE = 10000
DELETE_BATCH_SIZE = 100
QTY_TOLERANCE = 0.001
_BATCH_PAUSE = 0.1
_PAGE_PAUSE = 0.2
_PROGRESS_EVERY = 100

BalanceKey = Tuple[str, str, str]


def _text(value: Any) -> str:
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


def _number(value: Any) -> str:
    rendered = _text(value)
    return rendered if rendered else "NULL"


def _quote(value: str) -> str:
    return value.replace("'", "''")


def _mappings(items: Iterable[Any]) -> Iterator[Mapping[str, Any]]:
    for item in items:
        if isinstance(item, Mapping):
            yield item
        else:
            log.warning("skipping item that is not a mapping: %r", item)


def product_barcode_insert_query(items: Iterable[Any]) -> str | None:
    """Build one INSERT for ``ic_inventory_barcode``; None when nothing to insert."""
    values = []
    for item in _mappings(items):
        ic_code = _quote(_text(item.get("ic_code")))
        barcode = _quote(_text(item.get("barcode")))
        name = _quote(_text(item.get("name")))
        unit_code = _quote(_text(item.get("unit_code")))
        unit_name = _quote(_text(item.get("unit_name")))
        row_order_ref = _number(item.get("row_order_ref"))
        values.append(
            f"('{ic_code}', '{barcode}', '{name}', '{unit_code}', '{unit_name}', {row_order_ref})"
        )
    if not values:
        return None
    return (
        "INSERT INTO ic_inventory_barcode "
        "(ic_code, barcode, name, unit_code, unit_name, row_order_ref) VALUES "
        + ",".join(values)
    )


def customer_insert_query(items: Iterable[Any]) -> str | None:
    """Build one INSERT for ``ar_customer``; None when nothing to insert.

    Raises ValueError when a customer lacks row_order_ref, code or price_level.
    """
    values = []
    for item in _mappings(items):
        code = _quote(_text(item.get("code")))
        price_level = _quote(_text(item.get("price_level")))
        row_order_ref = _quote(_text(item.get("row_order_ref")))
        if not row_order_ref:
            raise ValueError("row_order_ref is required")
        if not code:
            raise ValueError("code is required")
        if not price_level:
            raise ValueError("price_level is required")
        values.append(f"('{code}', '{price_level}', '{row_order_ref}')")
    if not values:
        return None
    return "INSERT INTO ar_customer (code, price_level, row_order_ref) VALUES " + ",".join(values)


def _delete_by_row_order_ref(
    client: APIClient, table: str, refs: Iterable[Any], *, quoted: bool
) -> int:
    """Delete rows in batches; a failed batch is logged and skipped."""
    refs = list(refs)
    deleted = 0
    for start in range(0, len(refs), DELETE_BATCH_SIZE):
        batch = refs[start:start + DELETE_BATCH_SIZE]
        if quoted:
            listed = ",".join(f"'{_quote(_text(ref))}'" for ref in batch)
        else:
            listed = ",".join(_text(ref) for ref in batch)
        query = f"DELETE FROM {table} WHERE row_order_ref IN ({listed})"
        try:
            response = client.execute_command(query)
        except APIError as exc:
            log.warning("cannot delete a batch from %s: %s", table, exc)
        else:
            if response.success:
                deleted += len(batch)
                log.info("deleted a batch of %d rows from %s", len(batch), table)
            else:
                log.warning("deleting a batch from %s failed: %s", table, response.message)
        if start + DELETE_BATCH_SIZE < len(refs):
            time.sleep(_BATCH_PAUSE)
    log.info("deleted %d rows from %s", deleted, table)
    return deleted


def _run_insert(client: APIClient, query: str, label: str) -> None:
    try:
        response = client.execute_command(query)
    except APIError as exc:
        raise APIError(
            f"error executing batch insert {label}: {exc}",
            response=exc.response,
            status=exc.status,
        ) from exc
    if not response.success:
        raise APIError(f"batch insert {label} failed: {response.message}", response=response)


def sync_product_barcode_data(
    client: APIClient,
    inserts: Iterable[Any],
    updates: Iterable[Any],
    deletes: Iterable[Any],
) -> None:
    """Delete changed barcodes by row_order_ref, then insert the new rows."""
    inserts, updates, deletes = list(inserts), list(updates), list(deletes)
    log.info(
        "syncing ProductBarcode: %d inserts, %d updates, %d deletes",
        len(inserts), len(updates), len(deletes),
    )
    if deletes:
        _delete_by_row_order_ref(client, "ic_inventory_barcode", deletes, quoted=False)
    if inserts:
        query = product_barcode_insert_query(inserts)
        if query is not None:
            _run_insert(client, query, "ProductBarcode")
            log.info("inserted ProductBarcode rows")


def sync_customer_data(
    client: APIClient,
    inserts: Iterable[Any],
    updates: Iterable[Any],
    deletes: Iterable[Any],
) -> None:
    """Delete changed customers by row_order_ref, then insert the new rows."""
    inserts, updates, deletes = list(inserts), list(updates), list(deletes)
    log.info(
        "syncing customers: %d inserts, %d updates, %d deletes",
        len(inserts), len(updates), len(deletes),
    )
    if deletes:
        _delete_by_row_order_ref(client, "ar_customer", deletes, quoted=True)
    if inserts:
        query = customer_insert_query(inserts)
        if query is not None:
            _run_insert(client, query, "customer")
            log.info("inserted customer rows")


@dataclass
class BalanceDiff:
    """What has to change on the server to match the local balances."""

    inserts: list[dict[str, Any]] = field(default_factory=list)
    updates: list[dict[str, Any]] = field(default_factory=list)
    deletes: list[BalanceKey] = field(default_factory=list)


def _key(row: Mapping[str, Any]) -> BalanceKey:
    return (_text(row.get("ic_code")), _text(row.get("wh_code")), _text(row.get("unit_code")))


def normalize_balance(item: Mapping[str, Any]) -> dict[str, Any] | None:
    """Map a local balance to server column names; None if a code is missing.

    The warehouse may be given as ``wh_code`` or ``warehouse`` and the unit as
    ``unit_code`` or ``ic_unit_code``; the first name present wins.
    """
    ic_code = _text(item.get("ic_code"))
    wh_code = _text(item["wh_code"] if "wh_code" in item else item.get("warehouse"))
    unit_code = _text(item["unit_code"] if "unit_code" in item else item.get("ic_unit_code"))
    if not (ic_code and wh_code and unit_code):
        return None
    return {
        "ic_code": ic_code,
        "wh_code": wh_code,
        "unit_code": unit_code,
        "balance_qty": item.get("balance_qty"),
    }


def _qty_changed(server_qty: Any, local_qty: Any) -> bool:
    server_text, local_text = _text(server_qty), _text(local_qty)
    try:
        return abs(float(server_text) - float(local_text)) > QTY_TOLERANCE
    except ValueError:
        return server_text != local_text


def diff_balances(
    local: Iterable[Any], server: Mapping[BalanceKey, Mapping[str, Any]]
) -> BalanceDiff:
    """Compare local balances with server rows keyed by (ic, warehouse, unit)."""
    local_rows: dict[BalanceKey, dict[str, Any]] = {}
    for item in _mappings(local):
        normalized = normalize_balance(item)
        if normalized is not None:
            local_rows[_key(normalized)] = normalized

    diff = BalanceDiff()
    for key, row in local_rows.items():
        existing = server.get(key)
        if existing is None:
            diff.inserts.append(row)
        elif _key(existing) != key or _qty_changed(existing.get("balance_qty"), row["balance_qty"]):
            diff.updates.append(row)
    diff.deletes = [key for key in server if key not in local_rows]
    return diff


def fetch_server_balances(
    client: APIClient, page_size: int = BALANCE_PAGE_SIZE
) -> dict[BalanceKey, Mapping[str, Any]]:
    """Read all of ``ic_balance`` from the server, page by page.

    A failing request ends the read with what was fetched so far.
    """
    rows: dict[BalanceKey, Mapping[str, Any]] = {}
    offset = 0
    while True:
        query = (
            "SELECT ic_code, wh_code, unit_code, balance_qty FROM ic_balance "
            f"LIMIT {page_size} OFFSET {offset}"
        )
        try:
            response = client.execute_select(query)
        except APIError as exc:
            log.warning("cannot read balances at offset %d: %s", offset, exc)
            break
        if not response.success or response.data is None:
            log.info("no more balance rows or the request failed")
            break
        fetched = 0
        if isinstance(response.data, list):
            for row in response.data:
                if isinstance(row, Mapping):
                    rows[_key(row)] = row
                    fetched += 1
        log.info("fetched page %d: %d rows", offset // page_size + 1, fetched)
        if fetched < page_size:
            break
        offset += page_size
        time.sleep(_PAGE_PAUSE)
    log.info("fetched %d balance rows from the server", len(rows))
    return rows


def _run_each(client: APIClient, queries: Iterable[str], action: str) -> int:
    done = 0
    total = 0
    for number, query in enumerate(queries, 1):
        total = number
        try:
            response = client.execute_command(query)
        except APIError as exc:
            log.error("error on %s of record %d: %s", action, number, exc)
            continue
        if not response.success:
            log.error("%s of record %d failed: %s", action, number, response.message)
            continue
        done += 1
        if number % _PROGRESS_EVERY == 0:
            log.info("%s: %d done", action, number)
    log.info("%s finished: %d of %d succeeded", action, done, total)
    return done


def _delete_query(key: BalanceKey) -> str:
    ic_code, wh_code, unit_code = (_quote(part) for part in key)
    return (
        f"DELETE FROM ic_balance WHERE ic_code = '{ic_code}' "
        f"AND wh_code = '{wh_code}' AND unit_code = '{unit_code}'"
    )


def _insert_query(row: Mapping[str, Any]) -> str:
    return (
        "INSERT INTO ic_balance (ic_code, wh_code, unit_code, balance_qty) VALUES "
        f"('{_quote(row['ic_code'])}', '{_quote(row['wh_code'])}', "
        f"'{_quote(row['unit_code'])}', {_number(row['balance_qty'])})"
    )


def _update_query(row: Mapping[str, Any]) -> str:
    return (
        f"UPDATE ic_balance SET balance_qty = {_number(row['balance_qty'])} "
        f"WHERE ic_code = '{_quote(row['ic_code'])}' AND wh_code = '{_quote(row['wh_code'])}' "
        f"AND unit_code = '{_quote(row['unit_code'])}'"
    )


def sync_inventory_balance_data(client: APIClient, data: Iterable[Any]) -> int:
    """Make the server's ``ic_balance`` match local balances.

    Deletes, inserts and updates are sent one row at a time; returns how many
    statements succeeded.
    """
    data = list(data)
    log.info("syncing %d balance rows", len(data))
    server = fetch_server_balances(client)
    diff = diff_balances(data, server)
    log.info(
        "balance changes: insert %d, update %d, delete %d",
        len(diff.inserts), len(diff.updates), len(diff.deletes),
    )
    succeeded = 0
    succeeded += _run_each(client, map(_delete_query, diff.deletes), "delete")
    succeeded += _run_each(client, map(_insert_query, diff.inserts), "insert")
    succeeded += _run_each(client, map(_update_query, diff.updates), "update")
    log.info("balance sync finished: %d statements succeeded", succeeded)
    return succeeded