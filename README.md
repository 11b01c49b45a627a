# smlmarketsync

`smlmarketsync` copies changes from a local PostgreSQL sales database to a
remote database that is reached through an HTTP gateway accepting SQL queries
(`/pgselect` for reads, `/pgcommand` for writes, each a JSON body
`{"query": "..."}`).

It covers five kinds of data:

| Remote table           | Source in the local database                       | How changes are found           |
|------------------------|----------------------------------------------------|---------------------------------|
| `ic_inventory`         | `ic_inventory`                                     | change log (table id 2)         |
| `ic_inventory_price`   | `ic_inventory_price`                               | change log (table id 1)         |
| `ic_inventory_barcode` | `ic_inventory_barcode`                             | change log (table id 3)         |
| `ar_customer`          | `ar_customer`                                      | change log (table id 4)         |
| `ic_balance`           | computed from `ic_trans_detail` and `ic_inventory` | full comparison with the server |

## How it works

Before syncing, the command prepares the local database if needed:

* it creates the change log table `sml_market_sync`
  (`id`, `table_id`, `active_code`, `row_order_ref`), and
* it installs a trigger and trigger function on each tracked table that writes
  one row into the log for every insert (`active_code` 1), update (2) and
  delete (3), pointing at the changed row's `roworder`.

Each run then goes through the steps in this order: products, prices,
barcodes, customers, balances.

* For products, prices, barcodes and customers, the pending log entries are
  read, removed from the log in batches of 100, and applied to the remote
  table. An update is applied as a delete of the old remote row followed by
  an insert of the current local row. Remote deletes and inserts are sent in
  batches; a failed batch is logged and the step carries on.
* For balances, the remote `ic_balance` table is read in pages of 10,000 rows
  and compared with the non-zero balances computed locally per item,
  warehouse and unit. Missing rows are deleted, new ones inserted and changed
  ones updated, one statement per row. Quantities that differ by no more than
  0.001 count as equal.

The remote tables `ic_inventory` and `ic_inventory_price` are created with
`CREATE TABLE IF NOT EXISTS` at the start of their step (a failure to create
the price table only gives a warning); `ic_inventory_barcode`, `ar_customer`
and `ic_balance` are created only when the gateway reports that they are
missing.

## Installation

```
pip install smlmarketsync
```

SQLAlchemy needs a PostgreSQL driver for `postgresql` URLs (psycopg2 by
default). It is not installed with this package; install one yourself.

## Configuration

The connection to the local database is read from a JSON file,
`smlmarketsync.json` in the working directory unless told otherwise:

```json
{
  "database": {
    "host": "localhost",
    "port": 5432,
    "user": "user",
    "password": "password",
    "dbname": "sml"
  }
}
```

The connection is made with SSL disabled.

## Running

```
smlmarketsync
```

Options:

* `-c FILE`, `--config FILE` – JSON file with the database settings
  (default `smlmarketsync.json`);
* `--api-url URL` – base URL of the SQL gateway, to which `/pgselect` and
  `/pgcommand` are appended.

Progress is printed and logged as each step runs. The command exits with
status 1 and a message on standard error if the configuration cannot be read,
the database cannot be reached, or a step fails; otherwise it exits with 0.

## Using it from Python

```python
from smlmarketsync.cli import ensure_tracking, run_sync
from smlmarketsync.client import APIClient
from smlmarketsync.database import DatabaseConfig

engine = DatabaseConfig.from_file("smlmarketsync.json").connect()
client = APIClient(base_url="http://localhost:8008/v1")

ensure_tracking(engine)          # names of the tables/triggers it created
results = run_sync(engine, client)
```

`run_sync` returns each step's result by name: the `ChangeSet`
(`sync_ids`, `inserts`, `updates`, `deletes`) handled by the `product`,
`price`, `product_barcode` and `customer` steps, and the number of successful
remote statements for `balance`.

Single steps can be run on their own, each taking an engine and an optional
client:

* `smlmarketsync.product_steps.ProductSyncStep`
* `smlmarketsync.product_steps.ProductBarcodeSyncStep`
* `smlmarketsync.price_step.PriceSyncStep`
* `smlmarketsync.customer_step.CustomerSyncStep`
* `smlmarketsync.balance_step.BalanceSyncStep`

for example `PriceSyncStep(engine, client).execute()`. Their
`fetch_changes()` (or `fetch_balances()` for balances) only reads the local
data without changing anything.

`APIClient.execute_select` and `APIClient.execute_command` send any SQL to the
gateway and return a `QueryResponse` (`success`, `data`, `message`, `error`);
they raise `smlmarketsync.client.APIError` when the request fails, the body is
not valid JSON, or the status is not 200. The client also has
`check_table_exists`, `drop_table`, the `create_*_table` methods and
`get_sync_statistics`.

## What it does not do

* It only pushes data one way, from the local database to the remote one;
  nothing is read back into the local database.
* It runs once and exits; it has no scheduler or daemon mode.
* Values are written into the remote SQL as text, with single quotes doubled;
  there is no parameter binding on the gateway side.

## Development

```
pip install -e ".[test]"
pytest
```