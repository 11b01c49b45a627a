"""Local PostgreSQL access: configuration, change log table and triggers."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError

from smlmarketsync.records import ActiveCode

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "smlmarketsync.json"
SYNC_TABLE = "sml_market_sync"


class TrackedTable(Enum):
    """A local table whose changes are logged into ``sml_market_sync``."""

    PRICE = (1, "ic_inventory_price", "price")
    INVENTORY = (2, "ic_inventory", "inventory")
    INVENTORY_BARCODE = (3, "ic_inventory_barcode", "inventory_barcode")
    CUSTOMER = (4, "ar_customer", "customer")

    def __init__(self, table_id: int, table_name: str, stem: str) -> None:
        self.table_id = table_id
        self.table_name = table_name
        self.stem = stem

    @property
    def trigger_name(self) -> str:
        return f"{self.stem}_changes_trigger"

    @property
    def function_name(self) -> str:
        return f"log_{self.stem}_changes"


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the local database."""

    host: str = ""
    port: int = 0
    user: str = ""
    password: str = ""
    dbname: str = ""

    @classmethod
    def from_file(cls, path: str | Path = DEFAULT_CONFIG_PATH) -> DatabaseConfig:
        """Load the ``database`` section of a JSON configuration file."""
        raw = Path(path).read_text(encoding="utf-8")
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"cannot parse {path}: {exc}") from exc
        section: Any = document.get("database", {}) if isinstance(document, dict) else None
        if not isinstance(section, dict):
            raise ValueError(f"{path}: 'database' must be an object")
        port = section.get("port", 0)
        if isinstance(port, bool) or not isinstance(port, int):
            raise ValueError(f"{path}: 'port' must be an integer")
        config = cls(
            host=str(section.get("host", "")),
            port=port,
            user=str(section.get("user", "")),
            password=str(section.get("password", "")),
            dbname=str(section.get("dbname", "")),
        )
        log.info("loaded settings from %s: %s:%d", path, config.host, config.port)
        return config

    def url(self) -> URL:
        """Return the SQLAlchemy URL for this database, with SSL disabled."""
        return URL.create(
            "postgresql",
            username=self.user or None,
            password=self.password or None,
            host=self.host or None,
            port=self.port or None,
            database=self.dbname or None,
            query={"sslmode": "disable"},
        )

    def connect(self) -> Engine:
        """Create an engine and check that the database answers."""
        try:
            engine = create_engine(self.url())
        except (SQLAlchemyError, ImportError) as exc:
            raise ConnectionError(f"error opening database: {exc}") from exc
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, ImportError) as exc:
            engine.dispose()
            raise ConnectionError(f"error connecting to database: {exc}") from exc
        log.info("connected to PostgreSQL database")
        return engine


_TABLE_EXISTS = text(
    "SELECT EXISTS (SELECT 1 FROM information_schema.tables "
    "WHERE table_schema = 'public' AND table_name = :name)"
)
_TRIGGER_EXISTS = text(
    "SELECT EXISTS (SELECT 1 FROM information_schema.triggers "
    "WHERE event_object_table = :table)"
)
_NAMED_TRIGGER_EXISTS = text(
    "SELECT EXISTS (SELECT 1 FROM information_schema.triggers "
    "WHERE event_object_table = :table AND trigger_name = :trigger)"
)
_FUNCTION_EXISTS = text(
    "SELECT EXISTS (SELECT 1 FROM information_schema.routines "
    "WHERE routine_type = 'FUNCTION' AND routine_name = :routine)"
)


def _exists(engine: Engine, query: Any, params: dict[str, str], what: str) -> bool:
    try:
        with engine.connect() as conn:
            return bool(conn.execute(query, params).scalar())
    except SQLAlchemyError as exc:
        log.error("error checking %s: %s", what, exc)
        return False


def table_exists(engine: Engine, table_name: str) -> bool:
    """Tell whether a table exists in the public schema; False on error."""
    return _exists(engine, _TABLE_EXISTS, {"name": table_name}, f"table {table_name}")


def create_sync_table(engine: Engine) -> None:
    """Create the ``sml_market_sync`` change log table if it is missing."""
    query = (
        f"CREATE TABLE IF NOT EXISTS {SYNC_TABLE} ("
        "id SERIAL PRIMARY KEY, "
        "table_id INT NOT NULL, "
        "active_code INT DEFAULT 0, "
        "row_order_ref INT DEFAULT 0)"
    )
    try:
        with engine.begin() as conn:
            conn.exec_driver_sql(query)
    except SQLAlchemyError as exc:
        raise RuntimeError(f"cannot create table {SYNC_TABLE}: {exc}") from exc


def trigger_exists(engine: Engine, table_name: str) -> bool:
    """Tell whether any trigger is defined on a table; False on error."""
    return _exists(engine, _TRIGGER_EXISTS, {"table": table_name},
                   f"triggers of {table_name}")


def _tracking_exists(engine: Engine, table: TrackedTable) -> bool:
    if not _exists(
        engine,
        _NAMED_TRIGGER_EXISTS,
        {"table": table.table_name, "trigger": table.trigger_name},
        f"{table.stem} trigger",
    ):
        return False
    return _exists(engine, _FUNCTION_EXISTS, {"routine": table.function_name},
                   f"{table.stem} function")


def _function_sql(table: TrackedTable) -> str:
    tid = table.table_id
    return f"""
CREATE OR REPLACE FUNCTION {table.function_name}()
RETURNS TRIGGER AS $$
BEGIN
    IF TG_OP = 'INSERT' THEN
        INSERT INTO {SYNC_TABLE} (table_id, active_code, row_order_ref)
        VALUES ({tid}, {int(ActiveCode.INSERT)}, NEW.roworder);
    ELSIF TG_OP = 'UPDATE' THEN
        INSERT INTO {SYNC_TABLE} (table_id, active_code, row_order_ref)
        VALUES ({tid}, {int(ActiveCode.UPDATE)}, NEW.roworder);
    ELSIF TG_OP = 'DELETE' THEN
        INSERT INTO {SYNC_TABLE} (table_id, active_code, row_order_ref)
        VALUES ({tid}, {int(ActiveCode.DELETE)}, OLD.roworder);
    END IF;
    RETURN NULL;
END;
$$ LANGUAGE plpgsql;
"""


def _create_tracking(engine: Engine, table: TrackedTable) -> None:
    try:
        with engine.begin() as conn:
            conn.exec_driver_sql(_function_sql(table))
    except SQLAlchemyError as exc:
        raise RuntimeError(f"cannot create function {table.function_name}: {exc}") from exc
    try:
        with engine.begin() as conn:
            conn.exec_driver_sql(
                f"DROP TRIGGER IF EXISTS {table.trigger_name} ON {table.table_name}"
            )
            conn.exec_driver_sql(
                f"CREATE TRIGGER {table.trigger_name} "
                f"AFTER INSERT OR UPDATE OR DELETE ON {table.table_name} "
                f"FOR EACH ROW EXECUTE FUNCTION {table.function_name}()"
            )
    except SQLAlchemyError as exc:
        raise RuntimeError(f"cannot create trigger {table.trigger_name}: {exc}") from exc


def price_trigger_exists(engine: Engine) -> bool:
    """Tell whether the price trigger and its function both exist."""
    return _tracking_exists(engine, TrackedTable.PRICE)


def inventory_trigger_exists(engine: Engine) -> bool:
    """Tell whether the inventory trigger and its function both exist."""
    return _tracking_exists(engine, TrackedTable.INVENTORY)


def inventory_barcode_trigger_exists(engine: Engine) -> bool:
    """Tell whether the barcode trigger and its function both exist."""
    return _tracking_exists(engine, TrackedTable.INVENTORY_BARCODE)


def customer_trigger_exists(engine: Engine) -> bool:
    """Tell whether the customer trigger and its function both exist."""
    return _tracking_exists(engine, TrackedTable.CUSTOMER)


def create_price_trigger(engine: Engine) -> None:
    """Install change logging on ``ic_inventory_price``."""
    _create_tracking(engine, TrackedTable.PRICE)


def create_inventory_trigger(engine: Engine) -> None:
    """Install change logging on ``ic_inventory``."""
    _create_tracking(engine, TrackedTable.INVENTORY)


def create_inventory_barcode_trigger(engine: Engine) -> None:
    """Install change logging on ``ic_inventory_barcode``."""
    _create_tracking(engine, TrackedTable.INVENTORY_BARCODE)


def create_customer_trigger(engine: Engine) -> None:
    """Install change logging on ``ar_customer``."""
    _create_tracking(engine, TrackedTable.CUSTOMER)