"""Tests for transport session persistence in the Auth table."""
import json

import pytest

from channels.session import CREDS_KEY, SessionStore, dumps, loads


@pytest.fixture
def session(rows) -> SessionStore:
    return SessionStore(rows)


def test_bytes_stored_as_base64_buffer():
    encoded = json.loads(dumps({"noise": b"\x00\x01\xff"}))
    assert encoded == {"noise": {"type": "Buffer", "data": "AAH/"}}
    assert loads(dumps({"noise": b"\x00\x01\xff"})) == {"noise": b"\x00\x01\xff"}


@pytest.mark.asyncio
async def test_load_splits_credentials_and_keys(session):
    await session.save_credentials({"access_token": "tok", "phone_number_id": "123"})
    await session.save({"pre-key-1": {"private": b"\x01\x02"}})

    state = await session.load()

    assert state.credentials == {"access_token": "tok", "phone_number_id": "123"}
    assert state.keys == {"pre-key-1": {"private": b"\x01\x02"}}


@pytest.mark.asyncio
async def test_save_upserts_existing_key(session, rows):
    await session.save({"k": 1})
    await session.save({"k": 2, "other": "x"})

    stored = await rows.list_rows("Auth")
    assert [r["key"] for r in stored] == ["k", "other"]
    assert (await session.load()).keys == {"k": 2, "other": "x"}


@pytest.mark.asyncio
async def test_unreadable_rows_skipped(session, rows):
    await rows.append_rows("Auth", [
        {"ID": CREDS_KEY, "key": CREDS_KEY, "value": "{broken"},
        {"ID": "k", "key": "k", "value": "\"ok\""},
        {"ID": "empty", "key": "empty", "value": ""},
    ])
    state = await session.load()
    assert state.credentials == {}
    assert state.keys == {"k": "ok"}
