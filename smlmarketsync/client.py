"""HTTP client for the remote SQL gateway and its table management calls."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import requests

log = logging.getLogger(__name__)

API_BASE_URL = "http://192.168.2.36:8008/v1"
SELECT_ENDPOINT = "/pgselect"
COMMAND_ENDPOINT = "/pgcommand"
DEFAULT_TIMEOUT = 120.0
_SAMPLE_LIMIT = 500

_INVENTORY_TABLE_SQL = """CREATE TABLE IF NOT EXISTS ic_inventory (
    code VARCHAR(50) NOT NULL,
    name VARCHAR(200),
    unit_standard_code VARCHAR(50),
    item_type int DEFAULT 0,
    row_order_ref INT DEFAULT 0,
    PRIMARY KEY (code)
)"""

_INVENTORY_BARCODE_TABLE_SQL = """CREATE TABLE IF NOT EXISTS ic_inventory_barcode (
    ic_code VARCHAR(50) NOT NULL,
    barcode VARCHAR(100) NOT NULL,
    name VARCHAR(200),
    unit_code VARCHAR(50),
    unit_name VARCHAR(100),
    row_order_ref INT DEFAULT 0,
    PRIMARY KEY (barcode)
)"""

_BALANCE_TABLE_SQL = """CREATE TABLE IF NOT EXISTS ic_balance (
    ic_code VARCHAR(50) NOT NULL,
    wh_code VARCHAR(50) NOT NULL,
    unit_code VARCHAR(50) NOT NULL,
    balance_qty NUMERIC(18,3) DEFAULT 0,
    PRIMARY KEY (ic_code, wh_code, unit_code)
)"""

_CUSTOMER_TABLE_SQL = """CREATE TABLE IF NOT EXISTS ar_customer (
    code VARCHAR(50) NOT NULL,
    price_level VARCHAR(50),
    row_order_ref INT DEFAULT 0,
    PRIMARY KEY (code)
)"""

_PRICE_TABLE_SQL = """CREATE TABLE IF NOT EXISTS ic_inventory_price (
    id SERIAL PRIMARY KEY,
    row_order_ref INT DEFAULT 0,
    ic_code VARCHAR(50) NOT NULL,
    unit_code VARCHAR(20),
    from_qty DECIMAL(15,6) DEFAULT 0,
    to_qty DECIMAL(15,6) DEFAULT 0,
    from_date DATE,
    to_date DATE,
    sale_type VARCHAR(20),
    sale_price1 DECIMAL(15,6) DEFAULT 0,
    status VARCHAR(20) DEFAULT 'active',
    price_type VARCHAR(20),
    cust_code VARCHAR(50),
    sale_price2 DECIMAL(15,6) DEFAULT 0,
    cust_group_1 VARCHAR(50),
    price_mode VARCHAR(20)
)"""


class APIError(Exception):
    """A call to the remote API failed or returned something unusable."""

    def __init__(
        self,
        message: str,
        *,
        response: QueryResponse | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.response = response
        self.status = status


def _optional_str(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


@dataclass(frozen=True)
class QueryResponse:
    """Body returned by the gateway for a select or a command."""

    success: bool = False
    data: Any = None
    message: str = ""
    error: str = ""

    @classmethod
    def from_json(cls, payload: str | bytes | bytearray | Mapping[str, Any] | None) -> QueryResponse:
        """Build a response from JSON text or an already decoded object."""
        if isinstance(payload, (str, bytes, bytearray)):
            try:
                payload = json.loads(payload)
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                raise ValueError(f"invalid JSON: {exc}") from exc
        if payload is None:
            return cls()
        if not isinstance(payload, Mapping):
            raise ValueError("response must be a JSON object")
        success = payload.get("success")
        if success is None:
            success = False
        if not isinstance(success, bool):
            raise ValueError("field 'success' must be a boolean")
        return cls(
            success=success,
            data=payload.get("data"),
            message=_optional_str(payload, "message"),
            error=_optional_str(payload, "error"),
        )

    def first_row(self) -> Mapping[str, Any] | None:
        """Return the first row of a select result, if there is one."""
        if isinstance(self.data, list) and self.data and isinstance(self.data[0], Mapping):
            return self.data[0]
        return None


def _number(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


class APIClient:
    """Runs SQL on the remote database through its HTTP gateway."""

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self._session = session if session is not None else requests.Session()

    def execute_select(self, query: str) -> QueryResponse:
        """Run a SELECT query and return the gateway's response."""
        return self._execute(query, SELECT_ENDPOINT)

    def execute_command(self, query: str) -> QueryResponse:
        """Run a statement such as INSERT, UPDATE, DELETE, CREATE or DROP."""
        return self._execute(query, COMMAND_ENDPOINT)

    def _execute(self, query: str, endpoint: str) -> QueryResponse:
        url = self.base_url + endpoint
        log.debug("sending request to %s", url)
        try:
            resp = self._session.post(url, json={"query": query}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise APIError(f"error executing request to {url}: {exc}") from exc

        body = resp.text
        sample = body if len(body) <= _SAMPLE_LIMIT else body[:_SAMPLE_LIMIT] + "..."
        log.debug("received response: %s", sample)

        try:
            response = QueryResponse.from_json(resp.content)
        except ValueError as exc:
            raise APIError(
                f"error unmarshaling response: {exc}\nResponse body: {sample}",
                status=resp.status_code,
            ) from exc

        if resp.status_code != 200:
            raise APIError(
                f"API request failed with status {resp.status_code}: {response.message}",
                response=response,
                status=resp.status_code,
            )
        return response

    def _command(self, query: str, failure: str) -> None:
        response = self.execute_command(query)
        if not response.success:
            raise APIError(f"{failure}: {response.message}", response=response)

    def check_table_exists(self, table_name: str) -> bool:
        """Tell whether the remote database has a table of this name."""
        query = (
            "SELECT EXISTS(SELECT 1 FROM information_schema.tables "
            f"WHERE table_name = '{table_name}')"
        )
        response = self.execute_select(query)
        if not response.success:
            raise APIError(
                f"failed to check if table exists: {response.message}", response=response
            )
        row = response.first_row()
        if row is not None and isinstance(row.get("exists"), bool):
            return row["exists"]
        raise APIError(
            "unexpected response format when checking if table exists", response=response
        )

    def drop_table(self, table_name: str) -> None:
        """Drop a remote table; nothing happens if it does not exist."""
        if not self.check_table_exists(table_name):
            return
        self._command(f"DROP TABLE IF EXISTS {table_name}", "failed to drop table")

    def create_inventory_table(self) -> None:
        """Create the remote ``ic_inventory`` table if it is missing."""
        try:
            self._command(_INVENTORY_TABLE_SQL, "failed to create inventory table")
        except APIError as exc:
            if str(exc).startswith("failed to create inventory table"):
                raise
            raise APIError(
                f"failed to create inventory table: {exc}",
                response=exc.response,
                status=exc.status,
            ) from exc

    def _create_if_missing(self, table_name: str, query: str, label: str) -> None:
        if self.check_table_exists(table_name):
            return
        self._command(query, f"failed to create {label} table")

    def create_inventory_barcode_table(self) -> None:
        """Create the remote ``ic_inventory_barcode`` table if it is missing."""
        self._create_if_missing(
            "ic_inventory_barcode", _INVENTORY_BARCODE_TABLE_SQL, "inventory barcode"
        )

    def create_balance_table(self) -> None:
        """Create the remote ``ic_balance`` table if it is missing."""
        self._create_if_missing("ic_balance", _BALANCE_TABLE_SQL, "balance")

    def create_customer_table(self) -> None:
        """Create the remote ``ar_customer`` table if it is missing."""
        self._create_if_missing("ar_customer", _CUSTOMER_TABLE_SQL, "customer")

    def create_price_table(self) -> None:
        """Create the remote ``ic_inventory_price`` table; failures only warn."""
        try:
            response = self.execute_command(_PRICE_TABLE_SQL)
        except APIError as exc:
            log.warning("error creating price table, continuing anyway: %s", exc)
            return
        if not response.success:
            log.warning(
                "failed to create price table, continuing anyway: %s", response.message
            )

    def _inventory_count(self) -> int:
        response = self.execute_select("SELECT COUNT(*) AS count FROM ic_inventory_barcode")
        row = response.first_row()
        count = _number(row.get("count")) if row is not None else None
        if count is None:
            raise APIError("failed to get inventory count", response=response)
        return count

    def get_sync_statistics(self) -> tuple[int, int]:
        """Return the synced row count and the total row count of the barcode table."""
        response = self.execute_select("SELECT COUNT(*) AS count FROM ic_inventory_barcode")
        row = response.first_row()
        synced = _number(row.get("count")) if row is not None else None
        total = self._inventory_count()
        return (synced or 0, total)