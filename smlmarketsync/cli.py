"""Command that installs change tracking and pushes local data to the API."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable, Sequence
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from smlmarketsync.balance_step import BalanceSyncStep
from smlmarketsync.client import API_BASE_URL, APIClient, APIError
from smlmarketsync.customer_step import CustomerSyncStep
from smlmarketsync.database import (
    DEFAULT_CONFIG_PATH,
    SYNC_TABLE,
    DatabaseConfig,
    create_customer_trigger,
    create_inventory_barcode_trigger,
    create_inventory_trigger,
    create_price_trigger,
    create_sync_table,
    customer_trigger_exists,
    inventory_barcode_trigger_exists,
    inventory_trigger_exists,
    price_trigger_exists,
    table_exists,
)
from smlmarketsync.price_step import PriceSyncStep
from smlmarketsync.product_steps import ProductBarcodeSyncStep, ProductSyncStep

_TRIGGERS: tuple[tuple[str, Callable[[Engine], bool], Callable[[Engine], None]], ...] = (
    ("ic_inventory_price", price_trigger_exists, create_price_trigger),
    ("ic_inventory", inventory_trigger_exists, create_inventory_trigger),
    ("ic_inventory_barcode", inventory_barcode_trigger_exists, create_inventory_barcode_trigger),
    ("ar_customer", customer_trigger_exists, create_customer_trigger),
)

_STEPS = (
    ("product", "products", ProductSyncStep),
    ("price", "prices", PriceSyncStep),
    ("product_barcode", "ProductBarcode", ProductBarcodeSyncStep),
    ("customer", "customers", CustomerSyncStep),
    ("balance", "balances", BalanceSyncStep),
)


def ensure_tracking(engine: Engine) -> list[str]:
    """Create the change log table and triggers that are missing.

    Returns the names of what was created; raises RuntimeError on failure.
    """
    created = []
    if table_exists(engine, SYNC_TABLE):
        print(f"table {SYNC_TABLE} already exists")
    else:
        create_sync_table(engine)
        created.append(SYNC_TABLE)
        print(f"table {SYNC_TABLE} created")
    for table, exists, create in _TRIGGERS:
        if exists(engine):
            print(f"trigger for {table} already exists")
            continue
        create(engine)
        created.append(table)
        print(f"trigger for {table} created")
    return created


def run_sync(engine: Engine, client: APIClient | None = None) -> dict[str, Any]:
    """Run every sync step in order and return each step's result by name."""
    client = client if client is not None else APIClient()
    print("starting data sync")
    results: dict[str, Any] = {}
    for key, label, step_class in _STEPS:
        print(f"\nsyncing {label}")
        results[key] = step_class(engine, client).execute()
        print(f"{label} sync finished")
    return results


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the ``smlmarketsync`` command."""
    parser = argparse.ArgumentParser(
        prog="smlmarketsync",
        description="Push local inventory, price, customer and balance data to the remote API.",
    )
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_PATH,
                        help="JSON file with the database settings")
    parser.add_argument("--api-url", default=API_BASE_URL, help="base URL of the SQL gateway")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    print("=== syncing local data to the remote database ===")
    try:
        engine = DatabaseConfig.from_file(args.config).connect()
    except (OSError, ValueError) as exc:
        print(f"failed to connect to source database: {exc}", file=sys.stderr)
        return 1

    try:
        ensure_tracking(engine)
        run_sync(engine, APIClient(base_url=args.api_url))
    except (RuntimeError, ValueError, APIError, SQLAlchemyError) as exc:
        print(f"sync failed: {exc}", file=sys.stderr)
        return 1
    finally:
        engine.dispose()

    print("\nall sync steps finished")
    print("tables synced: ic_inventory_barcode, ic_balance, ar_customer, ic_inventory_price")
    return 0