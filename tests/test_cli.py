import json

import pytest
import responses
from sqlalchemy import create_engine, inspect, text

from smlmarketsync.changes import ChangeSet
from smlmarketsync.cli import ensure_tracking, main, run_sync
from smlmarketsync.client import APIClient

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
        if "information_schema" in query:
            data = [{"exists": True}]
        elif query.startswith("SELECT"):
            data = []
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


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'local.db'}")
    with eng.begin() as conn:
        conn.execute(text(
            "CREATE TABLE sml_market_sync (id INTEGER PRIMARY KEY, table_id INT, "
            "active_code INT, row_order_ref INT)"
        ))
        conn.execute(text("CREATE TABLE ic_inventory (code TEXT, unit_standard TEXT, item_type INT)"))
        conn.execute(text(
            "CREATE TABLE ic_trans_detail (item_code TEXT, wh_code TEXT, calc_flag INT, "
            "trans_flag INT, qty REAL, stand_value REAL, divide_value REAL, inquiry_type INT, "
            "doc_ref TEXT, is_pos INT, last_status INT, item_type INT, is_doc_copy INT)"
        ))
    return eng


def test_ensure_tracking_creates_log_table_before_failing(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'fresh.db'}")
    with pytest.raises(RuntimeError, match="log_price_changes"):
        ensure_tracking(eng)
    assert inspect(eng).has_table("sml_market_sync")


def test_run_sync_with_empty_log(engine, rsps):
    gateway = _Gateway(rsps)
    results = run_sync(engine, APIClient(base_url=BASE))
    assert list(results) == ["product", "price", "product_barcode", "customer", "balance"]
    for key in ("product", "price", "product_barcode", "customer"):
        assert results[key] == ChangeSet()
    assert results["balance"] == 0
    assert all(q.startswith("CREATE TABLE IF NOT EXISTS") for q in gateway.commands)


def test_run_sync_pushes_customer_delete(engine, rsps):
    gateway = _Gateway(rsps)
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE ar_customer (roworder INT, code TEXT, price_level TEXT)"))
        conn.execute(text(
            "INSERT INTO sml_market_sync (id, table_id, active_code, row_order_ref) "
            "VALUES (1, 4, 3, 42)"
        ))
    results = run_sync(engine, APIClient(base_url=BASE))
    assert results["customer"].deletes == [42]
    assert "DELETE FROM ar_customer WHERE row_order_ref IN ('42')" in gateway.commands
    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM sml_market_sync")).scalar() == 0


def test_main_missing_config(tmp_path, capsys):
    missing = tmp_path / "missing.json"
    assert main(["--config", str(missing)]) == 1
    assert "missing.json" in capsys.readouterr().err


def test_main_invalid_config(tmp_path, capsys):
    config = tmp_path / "smlmarketsync.json"
    config.write_text("{", encoding="utf-8")
    assert main(["--config", str(config)]) == 1
    assert "cannot parse" in capsys.readouterr().err