"""
Session persistence for the delivery transport.

Credentials and keyed material live as key/value rows in the ``Auth`` table:
the ``creds`` row holds the credential document, every other row one key.
Values are JSON; bytes are stored as ``{"type": "Buffer", "data": <base64>}``
so binary key material survives the round trip through a text-only store.
"""
from __future__ import annotations

import base64
import json
import structlog
from dataclasses import dataclass, field
from typing import Any

from database.store_base import BaseRowStore

logger = structlog.get_logger()

AUTH_COLUMNS = ["ID", "key", "value"]
CREDS_KEY = "creds"


def _encode(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return {"type": "Buffer", "data": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if value.get("type") == "Buffer" and isinstance(value.get("data"), str):
            return base64.b64decode(value["data"])
        return {k: _decode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decode(v) for v in value]
    return value


def dumps(value: Any) -> str:
    return json.dumps(_encode(value), ensure_ascii=False)


def loads(text: str) -> Any:
    return _decode(json.loads(text))


@dataclass
class SessionState:
    credentials: dict[str, Any] = field(default_factory=dict)
    keys: dict[str, Any] = field(default_factory=dict)


class SessionStore:
    def __init__(self, rows: BaseRowStore, table: str = "Auth"):
        self.rows = rows
        self.table = table

    async def ensure_table(self) -> bool:
        return await self.rows.ensure_table(self.table, AUTH_COLUMNS)

    async def load(self) -> SessionState:
        state = SessionState()
        for row in await self.rows.list_rows(self.table):
            key = row.get("key") or row.get("ID")
            raw = row.get("value")
            if not key or not raw:
                continue
            try:
                value = loads(raw)
            except (ValueError, TypeError) as e:
                logger.warning("session_row_unreadable", key=key, error=str(e))
                continue
            if key == CREDS_KEY:
                state.credentials = value if isinstance(value, dict) else {}
            else:
                state.keys[key] = value
        logger.info("session_loaded", has_credentials=bool(state.credentials), keys=len(state.keys))
        return state

    async def save(self, keys: dict[str, Any]) -> None:
        """Upsert keyed material, one row per key."""
        existing = {row.get("key") for row in await self.rows.list_rows(self.table)}
        new_rows = []
        for key, value in keys.items():
            encoded = dumps(value)
            if key in existing:
                await self.rows.update_row(self.table, key, {"value": encoded})
            else:
                new_rows.append({"ID": key, "key": key, "value": encoded})
        if new_rows:
            await self.rows.append_rows(self.table, new_rows)

    async def save_credentials(self, credentials: dict[str, Any]) -> None:
        await self.save({CREDS_KEY: credentials})
