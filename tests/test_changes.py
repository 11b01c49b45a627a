import pytest
from sqlalchemy import create_engine, text

from smlmarketsync.changes import (
    ChangeSet,
    SyncBatchError,
    delete_sync_records,
    read_sync_entries,
)
from smlmarketsync.database import TrackedTable
from smlmarketsync.records import ActiveCode


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'local.db'}")
    with eng.begin() as conn:
        conn.exec_driver_sql(
            "CREATE TABLE sml_market_sync (id INTEGER PRIMARY KEY, table_id INT NOT NULL, "
            "active_code INT DEFAULT 0, row_order_ref INT DEFAULT 0)"
        )
    yield eng
    eng.dispose()


def _log(engine, rows):
    with engine.begin() as conn:
        for row in rows:
            conn.execute(
                text(
                    "INSERT INTO sml_market_sync (id, table_id, active_code, row_order_ref) "
                    "VALUES (:id, :table_id, :code, :ref)"
                ),
                dict(zip(("id", "table_id", "code", "ref"), row)),
            )


def _remaining_ids(engine):
    with engine.connect() as conn:
        return sorted(r[0] for r in conn.execute(text("SELECT id FROM sml_market_sync")))


def test_add_insert_goes_to_inserts_only():
    changes = ChangeSet()
    changes.add(ActiveCode.INSERT, 7, {"code": "A"})
    assert changes.inserts == [{"code": "A"}]
    assert changes.deletes == []


def test_add_update_is_delete_then_insert():
    changes = ChangeSet()
    changes.add(2, 7, {"code": "A"})
    assert changes.deletes == [7]
    assert changes.inserts == [{"code": "A"}]
    assert changes.updates == []


def test_add_delete_needs_no_record():
    changes = ChangeSet()
    changes.add(3, 9)
    assert changes.deletes == [9]
    assert changes.inserts == []


def test_add_unknown_code_is_ignored():
    changes = ChangeSet()
    changes.add(0, 5, {"code": "A"})
    assert changes == ChangeSet()


def test_add_insert_without_record_fails():
    with pytest.raises(ValueError):
        ChangeSet().add(1, 5)


def test_read_sync_entries_filters_and_orders(engine):
    _log(engine, [(1, 2, 1, 10), (2, 2, 3, 11), (3, 1, 2, 12), (4, 2, 2, 13)])
    entries = read_sync_entries(engine, TrackedTable.INVENTORY)
    assert {entry[0] for entry in entries} == {1, 2, 4}
    codes = [entry[2] for entry in entries]
    assert codes == sorted(codes, reverse=True)
    assert (2, 11, 3) in entries


def test_read_sync_entries_missing_table_raises(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    with pytest.raises(RuntimeError):
        read_sync_entries(eng, TrackedTable.PRICE)
    eng.dispose()


def test_delete_sync_records_removes_given_ids(engine):
    _log(engine, [(i, 1, 1, i) for i in range(1, 6)])
    deleted = delete_sync_records(engine, [1, 2, 3], batch_size=2)
    assert deleted == 3
    assert _remaining_ids(engine) == [4, 5]


def test_delete_sync_records_empty_returns_zero(engine):
    _log(engine, [(1, 1, 1, 1)])
    assert delete_sync_records(engine, []) == 0
    assert _remaining_ids(engine) == [1]


def test_delete_sync_records_rejects_bad_batch_size(engine):
    with pytest.raises(ValueError):
        delete_sync_records(engine, [1], batch_size=0)


def test_delete_sync_records_reports_failed_batches(engine):
    with engine.begin() as conn:
        conn.exec_driver_sql("DROP TABLE sml_market_sync")
    with pytest.raises(SyncBatchError) as info:
        delete_sync_records(engine, [1, 2, 3], batch_size=2)
    assert info.value.failed_batches == info.value.batch_count
    assert info.value.deleted == 0