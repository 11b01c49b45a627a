import json

import pytest
import responses
from sqlalchemy import create_engine, text

from smlmarketsync.balance_step import BalanceSyncStep
from smlmarketsync.client import APIClient, APIError
from smlmarketsync.records import BalanceItem

BASE = "http://api.example.com/v1"


class _Gateway:
    def __init__(self, rsps, server_rows=()):
        self.calls = []
        self.server_rows = list(server_rows)
        for endpoint in ("pgselect", "pgcommand"):
            rsps.add_callback(responses.POST, f"{BASE}/{endpoint}", callback=self._handle)

    def _handle(self, request):
        query = json.loads(request.body)["query"]
        endpoint = request.url.rsplit("/", 1)[-1]
        self.calls.append((endpoint, query))
        if "information_schema" in query:
            data = [{"exists": True}]
        elif query.startswith("SELECT") and "FROM ic_balance" in query:
            data = self.server_rows
        else:
            data = None
        return 200, {}, json.dumps({"success": True, "data": data, "message": "ok"})

    @property
    def commands(self):
        return [q for ep, q in self.calls if ep == "pgcommand"]


@pytest.fixture
def rsps():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


def _trans(item, wh, trans_flag, calc_flag, qty):
    return {
        "item": item, "wh": wh, "trans_flag": trans_flag, "calc_flag": calc_flag, "qty": qty,
    }


def _engine(tmp_path, inventory, trans):
    engine = create_engine(f"sqlite:///{tmp_path / 'local.db'}")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE ic_inventory (code TEXT, unit_standard TEXT, item_type INT)"))
        conn.execute(text(
            "CREATE TABLE ic_trans_detail (item_code TEXT, wh_code TEXT, calc_flag INT, "
            "trans_flag INT, qty REAL, stand_value REAL, divide_value REAL, inquiry_type INT, "
            "doc_ref TEXT, is_pos INT, last_status INT, item_type INT, is_doc_copy INT)"
        ))
        for code, unit, item_type in inventory:
            conn.execute(text(
                "INSERT INTO ic_inventory VALUES (:code, :unit, :type)"
            ), {"code": code, "unit": unit, "type": item_type})
        for row in trans:
            conn.execute(text(
                "INSERT INTO ic_trans_detail VALUES (:item, :wh, :calc_flag, :trans_flag, :qty, "
                "1.0, 1.0, 0, '', 0, 0, 0, 0)"
            ), row)
    return engine


@pytest.fixture
def engine(tmp_path):
    return _engine(
        tmp_path,
        [("A", "PCS", 0), ("B", "PCS", 1), ("C", "PCS", 0), ("D", "BOX", 0)],
        [
            _trans("A", "W1", 12, 1, 5.0),
            _trans("A", "W1", 56, -1, 2.0),
            _trans("B", "W1", 12, 1, 7.0),
            _trans("C", "W1", 12, 1, 4.0),
            _trans("C", "W1", 56, -1, 4.0),
            _trans("D", "W2", 12, 1, 4.0),
        ],
    )


def test_fetch_balances_excludes_zero_and_service_items(engine, rsps):
    step = BalanceSyncStep(engine, APIClient(base_url=BASE))
    assert step.fetch_balances() == [
        BalanceItem("A", "W1", "PCS", 3.0),
        BalanceItem("D", "W2", "BOX", 4.0),
    ]


def test_execute_applies_diff(engine, rsps):
    gateway = _Gateway(rsps, [
        {"ic_code": "A", "wh_code": "W1", "unit_code": "PCS", "balance_qty": 1},
        {"ic_code": "Z", "wh_code": "W9", "unit_code": "PCS", "balance_qty": 2},
    ])
    count = BalanceSyncStep(engine, APIClient(base_url=BASE)).execute()
    commands = gateway.commands
    assert count == len(commands) == 3
    assert commands[0] == (
        "DELETE FROM ic_balance WHERE ic_code = 'Z' AND wh_code = 'W9' AND unit_code = 'PCS'"
    )
    assert commands[1].startswith("INSERT INTO ic_balance")
    assert "'D', 'W2', 'BOX'" in commands[1]
    assert commands[2].startswith("UPDATE ic_balance SET balance_qty = 3")
    assert "ic_code = 'A'" in commands[2]


def test_execute_in_sync_sends_nothing(engine, rsps):
    gateway = _Gateway(rsps, [
        {"ic_code": "A", "wh_code": "W1", "unit_code": "PCS", "balance_qty": "3.0004"},
        {"ic_code": "D", "wh_code": "W2", "unit_code": "BOX", "balance_qty": 4},
    ])
    assert BalanceSyncStep(engine, APIClient(base_url=BASE)).execute() == 0
    assert gateway.commands == []


def test_execute_with_no_local_balances(tmp_path, rsps):
    gateway = _Gateway(rsps)
    empty = _engine(tmp_path, [], [])
    assert BalanceSyncStep(empty, APIClient(base_url=BASE)).execute() == 0
    assert [q for _, q in gateway.calls if "ic_balance LIMIT" in q] == []


def test_execute_raises_when_table_check_fails(engine, rsps):
    rsps.add(responses.POST, f"{BASE}/pgselect", json={"success": False, "message": "boom"})
    with pytest.raises(APIError, match="boom"):
        BalanceSyncStep(engine, APIClient(base_url=BASE)).execute()


def test_fetch_balances_without_tables(tmp_path):
    bare = create_engine(f"sqlite:///{tmp_path / 'bare.db'}")
    with pytest.raises(RuntimeError, match="balance query"):
        BalanceSyncStep(bare, APIClient(base_url=BASE)).fetch_balances()