import json

import pytest
import responses
from sqlalchemy import create_engine, text

from smlmarketsync.client import APIClient, APIError
from smlmarketsync.customer_step import CustomerSyncStep

BASE = "http://api.example.com/v1"


class _Gateway:
    def __init__(self, rsps):
        self.calls = []
        for endpoint in ("pgselect", "pgcommand"):
            rsps.add_callback(responses.POST, f"{BASE}/{endpoint}", callback=self._handle)

    def _handle(self, request):
        query = json.loads(request.body)["query"]
        endpoint = request.url.rsplit("/", 1)[-1]
        self.calls.append((endpoint, query))
        data = [{"exists": True}] if "information_schema" in query else None
        return 200, {}, json.dumps({"success": True, "data": data, "message": "ok"})

    @property
    def commands(self):
        return [q for ep, q in self.calls if ep == "pgcommand"]


@pytest.fixture
def rsps():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


def _engine(tmp_path, log_rows, customers):
    engine = create_engine(f"sqlite:///{tmp_path / 'local.db'}")
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE sml_market_sync (id INTEGER PRIMARY KEY, table_id INT, "
            "active_code INT, row_order_ref INT)"
        ))
        conn.execute(text("CREATE TABLE ar_customer (roworder INT, code TEXT, price_level TEXT)"))
        for row in log_rows:
            conn.execute(text(
                "INSERT INTO sml_market_sync (id, table_id, active_code, row_order_ref) "
                "VALUES (:id, :table_id, :code, :ref)"
            ), row)
        for row in customers:
            conn.execute(text(
                "INSERT INTO ar_customer (roworder, code, price_level) VALUES (:ref, :code, :level)"
            ), row)
    return engine


def _remaining_ids(engine):
    with engine.connect() as conn:
        return sorted(r[0] for r in conn.execute(text("SELECT id FROM sml_market_sync")))


def test_fetch_changes_sorts_entries(tmp_path, rsps):
    engine = _engine(
        tmp_path,
        [
            {"id": 1, "table_id": 4, "code": 1, "ref": 10},
            {"id": 2, "table_id": 4, "code": 2, "ref": 11},
            {"id": 3, "table_id": 4, "code": 3, "ref": 12},
            {"id": 4, "table_id": 4, "code": 1, "ref": 99},
            {"id": 5, "table_id": 1, "code": 1, "ref": 10},
        ],
        [
            {"ref": 10, "code": "C10", "level": "L1"},
            {"ref": 11, "code": "C11", "level": None},
        ],
    )
    step = CustomerSyncStep(engine, APIClient(base_url=BASE))
    changes = step.fetch_changes()
    assert sorted(changes.sync_ids) == [1, 2, 3, 4]
    assert changes.deletes == [12, 11]
    assert sorted(changes.inserts, key=lambda r: r["row_order_ref"]) == [
        {"row_order_ref": 10, "code": "C10", "price_level": "L1"},
        {"row_order_ref": 11, "code": "C11", "price_level": ""},
    ]
    assert changes.updates == []


def test_execute_without_changes_sends_no_commands(tmp_path, rsps):
    gateway = _Gateway(rsps)
    engine = _engine(tmp_path, [], [])
    changes = CustomerSyncStep(engine, APIClient(base_url=BASE)).execute()
    assert changes.sync_ids == []
    assert gateway.commands == []


def test_execute_deletes_then_inserts(tmp_path, rsps):
    gateway = _Gateway(rsps)
    engine = _engine(
        tmp_path,
        [
            {"id": 1, "table_id": 4, "code": 1, "ref": 10},
            {"id": 2, "table_id": 4, "code": 2, "ref": 11},
            {"id": 3, "table_id": 4, "code": 3, "ref": 12},
            {"id": 7, "table_id": 2, "code": 1, "ref": 5},
        ],
        [
            {"ref": 10, "code": "C10", "level": "L1"},
            {"ref": 11, "code": "C11", "level": "L2"},
        ],
    )
    CustomerSyncStep(engine, APIClient(base_url=BASE)).execute()
    assert _remaining_ids(engine) == [7]
    commands = gateway.commands
    assert len(commands) == 2
    assert commands[0] == "DELETE FROM ar_customer WHERE row_order_ref IN ('12','11')"
    assert commands[1].startswith("INSERT INTO ar_customer (code, price_level, row_order_ref)")
    assert "('C10', 'L1', '10')" in commands[1]
    assert "('C11', 'L2', '11')" in commands[1]


def test_execute_rejects_customer_without_price_level(tmp_path, rsps):
    _Gateway(rsps)
    engine = _engine(
        tmp_path,
        [{"id": 1, "table_id": 4, "code": 1, "ref": 10}],
        [{"ref": 10, "code": "C10", "level": None}],
    )
    with pytest.raises(ValueError, match="price_level is required"):
        CustomerSyncStep(engine, APIClient(base_url=BASE)).execute()


def test_execute_stops_when_table_check_fails(tmp_path, rsps):
    rsps.add(responses.POST, f"{BASE}/pgselect", json={"success": False, "message": "boom"})
    engine = _engine(tmp_path, [{"id": 1, "table_id": 4, "code": 3, "ref": 10}], [])
    with pytest.raises(APIError):
        CustomerSyncStep(engine, APIClient(base_url=BASE)).execute()
    assert _remaining_ids(engine) == [1]