"""
SheetsRowStore — Google Sheets backend, one worksheet per table.

The first row of each worksheet is the header row; every following row is a
record keyed by those headers. Sheets has no native row identity, so the
``ID`` column is scanned to locate a row before updating or deleting it.
Every call is a network round trip with no multi-row transaction guarantee.

Auth: service account (google-auth), token refreshed off the event loop.
Transport: httpx against the Sheets v4 REST API, retried with tenacity on
connection errors, 429 and 5xx.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Awaitable, Callable, Optional, Sequence
from urllib.parse import quote

import httpx
from tenacity import (
    retry, retry_if_exception, stop_after_attempt, wait_exponential,
)

from config.settings import StoreConfig
from database.store_base import (
    BaseRowStore, ID_COLUMN, RowNotFound, StoreUnavailable, find_row,
)

logger = structlog.get_logger()

SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


def column_letter(n: int) -> str:
    """1 -> A, 26 -> Z, 27 -> AA."""
    letters = ""
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return False


def service_account_token_provider(config: StoreConfig) -> Callable[[], Awaitable[str]]:
    """Build an async callable returning a fresh OAuth access token."""
    from google.auth.transport.requests import Request
    from google.oauth2 import service_account

    credentials = service_account.Credentials.from_service_account_info(
        {
            "type": "service_account",
            "client_email": config.service_account_email,
            "private_key": config.private_key,
            "token_uri": "https://oauth2.googleapis.com/token",
        },
        scopes=SCOPES,
    )

    async def provide() -> str:
        if not credentials.valid:
            await asyncio.to_thread(credentials.refresh, Request())
        return credentials.token

    return provide


class SheetsRowStore(BaseRowStore):
    """Row store over a single Google spreadsheet."""

    def __init__(
        self,
        config: StoreConfig,
        client: Optional[httpx.AsyncClient] = None,
        token_provider: Optional[Callable[[], Awaitable[str]]] = None,
    ):
        if not config.spreadsheet_id:
            raise ValueError("store.spreadsheet_id is required for the sheets backend")
        self.config = config
        self._client = client
        self._token_provider = token_provider
        self._sheet_ids: dict[str, int] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_s)
        return self._client

    async def _auth_headers(self) -> dict[str, str]:
        if self._token_provider is None:
            self._token_provider = service_account_token_provider(self.config)
        token = await self._token_provider()
        return {"Authorization": f"Bearer {token}"}

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=10),
        reraise=True,
    )
    async def _send(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        client = await self._get_client()
        headers = await self._auth_headers()
        response = await client.request(method, url, headers=headers, **kwargs)
        response.raise_for_status()
        return response.json() if response.content else {}

    async def _request(self, table: str, method: str, path: str, **kwargs) -> dict[str, Any]:
        url = f"{SHEETS_API}/{self.config.spreadsheet_id}{path}"
        try:
            return await self._send(method, url, **kwargs)
        except httpx.HTTPStatusError as e:
            raise StoreUnavailable(
                f"Sheets API {e.response.status_code} on {method} {path}: {e.response.text[:200]}",
                table,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise StoreUnavailable(f"Sheets API request failed: {e}", table) from e
        except Exception as e:
            # google-auth refresh failures surface here
            raise StoreUnavailable(f"Sheets authorization failed: {e}", table) from e

    @staticmethod
    def _range(table: str, a1: str = "") -> str:
        name = "'" + table.replace("'", "''") + "'"
        return quote(f"{name}!{a1}" if a1 else name, safe="")

    # ── Metadata ──────────────────────────────────────────

    async def _load_sheet_ids(self, table: str = "") -> dict[str, int]:
        meta = await self._request(table, "GET", "", params={"fields": "sheets.properties"})
        self._sheet_ids = {
            s["properties"]["title"]: s["properties"]["sheetId"]
            for s in meta.get("sheets", [])
        }
        return self._sheet_ids

    async def _sheet_id(self, table: str) -> int:
        if table not in self._sheet_ids:
            await self._load_sheet_ids(table)
        if table not in self._sheet_ids:
            raise StoreUnavailable(f"Worksheet {table!r} does not exist", table)
        return self._sheet_ids[table]

    async def _read(self, table: str) -> tuple[list[str], list[dict[str, Any]]]:
        data = await self._request(table, "GET", f"/values/{self._range(table)}")
        values = data.get("values") or []
        if not values:
            return [], []
        headers = [str(h) for h in values[0]]
        rows = []
        for raw in values[1:]:
            padded = list(raw) + [""] * (len(headers) - len(raw))
            rows.append(dict(zip(headers, padded)))
        return headers, rows

    @staticmethod
    def _encode(headers: list[str], record: dict[str, Any]) -> list[Any]:
        return ["" if record.get(h) is None else record.get(h) for h in headers]

    # ── BaseRowStore ──────────────────────────────────────

    async def list_rows(self, table: str) -> list[dict[str, Any]]:
        _, rows = await self._read(table)
        return rows

    async def append_rows(self, table: str, records: Sequence[dict[str, Any]]) -> None:
        if not records:
            return
        headers, _ = await self._read(table)
        if not headers:
            raise StoreUnavailable(f"Worksheet {table!r} has no header row", table)
        await self._request(
            table, "POST", f"/values/{self._range(table)}:append",
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json={"values": [self._encode(headers, r) for r in records]},
        )
        logger.debug("sheets_rows_appended", table=table, count=len(records))

    async def update_row(self, table: str, row_id: str, patch: dict[str, Any]) -> None:
        headers, rows = await self._read(table)
        idx = find_row(rows, row_id)
        if idx is None:
            raise RowNotFound(table, row_id)
        merged = {**rows[idx], **patch, ID_COLUMN: row_id}
        sheet_row = idx + 2  # header row + 1-based
        a1 = f"A{sheet_row}:{column_letter(len(headers))}{sheet_row}"
        await self._request(
            table, "PUT", f"/values/{self._range(table, a1)}",
            params={"valueInputOption": "RAW"},
            json={"values": [self._encode(headers, merged)]},
        )

    async def delete_row(self, table: str, row_id: str) -> None:
        _, rows = await self._read(table)
        idx = find_row(rows, row_id)
        if idx is None:
            raise RowNotFound(table, row_id)
        sheet_id = await self._sheet_id(table)
        start = idx + 1  # 0-based, skipping the header row
        await self._request(
            table, "POST", ":batchUpdate",
            json={"requests": [{
                "deleteDimension": {
                    "range": {
                        "sheetId": sheet_id,
                        "dimension": "ROWS",
                        "startIndex": start,
                        "endIndex": start + 1,
                    },
                },
            }]},
        )

    async def list_tables(self) -> list[str]:
        return sorted(await self._load_sheet_ids())

    async def ensure_table(self, table: str, headers: Sequence[str]) -> bool:
        existing = await self._load_sheet_ids(table)
        if table in existing:
            return False
        reply = await self._request(
            table, "POST", ":batchUpdate",
            json={"requests": [{"addSheet": {"properties": {"title": table}}}]},
        )
        try:
            props = reply["replies"][0]["addSheet"]["properties"]
            self._sheet_ids[table] = props["sheetId"]
        except (KeyError, IndexError):
            self._sheet_ids.pop(table, None)
        a1 = f"A1:{column_letter(len(headers))}1"
        await self._request(
            table, "PUT", f"/values/{self._range(table, a1)}",
            params={"valueInputOption": "RAW"},
            json={"values": [list(headers)]},
        )
        logger.info("table_created", table=table, backend="sheets")
        return True

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
