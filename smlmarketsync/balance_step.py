"""Sync step for stock balances computed from ``ic_trans_detail``."""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from smlmarketsync.client import APIClient
from smlmarketsync.records import BalanceItem
from smlmarketsync.remote_sync import sync_inventory_balance_data

log = logging.getLogger(__name__)

_PROGRESS_EVERY = 2000

_BALANCE_EXPR = """COALESCE(SUM(itd.calc_flag * (
    CASE WHEN ((itd.trans_flag IN (70,54,60,58,310,12) OR (itd.trans_flag=66 AND itd.qty>0)
                OR (itd.trans_flag=14 AND itd.inquiry_type=0)
                OR (itd.trans_flag=48 AND itd.inquiry_type < 2))
               OR (itd.trans_flag IN (56,68,72,44) OR (itd.trans_flag=66 AND itd.qty<0)
                   OR (itd.trans_flag=46 AND itd.inquiry_type IN (0,2))
                   OR (itd.trans_flag=16 AND itd.inquiry_type IN (0,2))
                   OR (itd.trans_flag=311 AND itd.inquiry_type=0))
               AND NOT (itd.doc_ref <> '' AND itd.is_pos = 1))
         THEN ROUND((itd.qty*itd.stand_value) / itd.divide_value, 2)
         ELSE 0
    END)), 0)"""

_BALANCES = text(
    "SELECT itd.item_code AS ic_code, itd.wh_code AS warehouse, "
    "ii.unit_standard AS ic_unit_code, "
    f"{_BALANCE_EXPR} AS balance_qty "
    "FROM ic_trans_detail itd "
    "INNER JOIN ic_inventory ii ON ii.code = itd.item_code AND ii.item_type NOT IN (1,3) "
    "WHERE itd.last_status = 0 AND itd.item_type <> 5 AND itd.is_doc_copy = 0 "
    "GROUP BY itd.item_code, itd.wh_code, ii.unit_standard "
    f"HAVING {_BALANCE_EXPR} <> 0 "
    "ORDER BY itd.item_code, itd.wh_code"
)


class BalanceSyncStep:
    """Makes the remote ``ic_balance`` table match the local stock balances."""

    def __init__(self, engine: Engine, client: APIClient | None = None) -> None:
        self.engine = engine
        self.client = client if client is not None else APIClient()

    def fetch_balances(self) -> list[BalanceItem]:
        """Compute non-zero balances per item, warehouse and unit.

        Rows with a missing code or an unparsable quantity are skipped.
        """
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(_BALANCES).all()
        except SQLAlchemyError as exc:
            raise RuntimeError(f"error executing balance query: {exc}") from exc

        balances = []
        for row in rows:
            if row.ic_code is None or row.warehouse is None or row.ic_unit_code is None:
                log.warning("skipping unreadable balance row: %r", tuple(row))
                continue
            try:
                qty = float(str(row.balance_qty))
            except ValueError:
                log.warning("skipping balance with bad quantity: %r", row.balance_qty)
                continue
            balances.append(BalanceItem(
                ic_code=str(row.ic_code),
                warehouse=str(row.warehouse),
                unit_code=str(row.ic_unit_code),
                balance_qty=qty,
            ))
            if len(balances) % _PROGRESS_EVERY == 0:
                log.info("read %d balances so far", len(balances))
        log.info("read %d balances from the local database", len(balances))
        return balances

    def execute(self) -> int:
        """Run the balance sync; returns how many remote statements succeeded."""
        log.info("syncing balances with the API")
        self.client.create_balance_table()
        balances = self.fetch_balances()
        if not balances:
            log.info("no balances in the local database")
            return 0
        log.info("first balance: %r", balances[0])
        count = sync_inventory_balance_data(self.client, [b.as_dict() for b in balances])
        log.info("balance sync finished: %d rows synced", count)
        return count