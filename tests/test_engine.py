"""Tests for the engine context and the HTTP API."""
import httpx
import pytest

from config.settings import MediaConfig, Settings
from conftest import FakeClock, FakeTransport, make_job
from core.engine import DeliveryEngine
from core.events import TRANSPORT_STATE
from database.store_memory import InMemoryRowStore


@pytest.fixture
def settings(tmp_path) -> Settings:
    (tmp_path / "uploads").mkdir()
    return Settings(media=MediaConfig(root=str(tmp_path)))


@pytest.fixture
def engine(settings) -> DeliveryEngine:
    return DeliveryEngine(settings, rows=InMemoryRowStore(), transport=FakeTransport(connected=False),
                          clock=FakeClock())


class TestDeliveryEngine:
    @pytest.mark.asyncio
    async def test_start_bootstraps_in_order(self, engine):
        states = []
        engine.events.subscribe(lambda name, payload: states.append(payload["state"])
                                if name == TRANSPORT_STATE else None)

        await engine.start(run_timers=False)

        assert engine.transport.is_connected
        assert states == ["connecting", "connected"]
        assert await engine.rows.list_tables() == ["Auth", "Birthdays", "Schedule"]
        session = await engine.session.load()
        assert session.credentials["last_connected_at"] == "2024-05-01T04:30:00Z"
        assert [t.name for t in engine.tasks] == ["queue_poll", "media_cleanup", "reminder_check"]

    @pytest.mark.asyncio
    async def test_session_credentials_reach_transport(self, engine):
        await engine.session.save_credentials({"access_token": "from-sheet"})
        await engine.start(run_timers=False)
        assert engine.transport.credentials["access_token"] == "from-sheet"

    @pytest.mark.asyncio
    async def test_startup_reminder_pass(self, engine):
        await engine.rows.append_rows("Birthdays", [{
            "ID": "b1", "Name": "Nimal", "Phone": "94771234567", "Birthday": "1990-05-02",
            "Gender": "male", "Relationship": "friend",
        }])
        await engine.start(run_timers=False)
        assert await engine.jobs.count_pending() == 1

    @pytest.mark.asyncio
    async def test_transport_failure_does_not_block_start(self, engine):
        engine.transport.open_error = "no route to host"
        await engine.start(run_timers=False)
        status = await engine.status()
        assert status["connected"] is False
        assert status["last_error"] == "no route to host"

    @pytest.mark.asyncio
    async def test_status(self, engine):
        await engine.start(run_timers=False)
        await engine.jobs.create_jobs([make_job()])
        await engine.processor.sweep()

        status = await engine.status()

        assert status["transport"] == "connected"
        assert status["sweep_running"] is False
        assert status["last_sweep_at"] == "2024-05-01T04:30:00Z"
        assert status["last_sweep"]["sent"] == 1
        assert status["pending"] == 0
        assert status["timezone"] == "Asia/Colombo"

    @pytest.mark.asyncio
    async def test_timers_cancelled_on_stop(self, engine):
        await engine.start()
        handles = list(engine.handles)
        assert len(handles) == 3
        await engine.stop()
        assert all(h.done for h in handles)
        assert not engine.transport.is_connected

    @pytest.mark.asyncio
    async def test_reminders_disabled(self, settings):
        settings.reminders.enabled = False
        engine = DeliveryEngine(settings, rows=InMemoryRowStore(), transport=FakeTransport(connected=False),
                                clock=FakeClock())
        await engine.start(run_timers=False)
        assert [t.name for t in engine.tasks] == ["queue_poll", "media_cleanup"]


class TestAPI:
    @pytest.fixture
    def client(self, engine, monkeypatch):
        import api.main as main
        monkeypatch.setattr(main, "_engine", engine)
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=main.app), base_url="http://test")

    @pytest.mark.asyncio
    async def test_schedule_and_list(self, engine, client):
        await engine.start(run_timers=False)
        async with client:
            resp = await client.post("/api/schedule", json={
                "recipients": "94771234567,94770000000",
                "caption": "hello",
                "send_at": "2024-05-02T09:00:00",
            })
            assert resp.status_code == 200
            assert resp.json()["count"] == 2

            listing = (await client.get("/api/schedule")).json()
            assert listing["count"] == 2
            assert listing["items"][0]["send_at"] == "2024-05-02T03:30:00Z"

    @pytest.mark.asyncio
    async def test_schedule_validation_error(self, engine, client):
        async with client:
            resp = await client.post("/api/schedule", json={"recipients": "94771234567",
                                                           "send_at": "2024-05-02T09:00:00"})
        assert resp.status_code == 400
        assert "media or caption required" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_clear(self, engine, client):
        await engine.jobs.create_jobs([make_job(status="failed"), make_job()])
        async with client:
            resp = await client.post("/api/schedule/clear", json={"mode": "failed"})
            assert resp.json()["deleted"] == 1
            bad = await client.post("/api/schedule/clear", json={"mode": "everything"})
            assert bad.status_code == 400

    @pytest.mark.asyncio
    async def test_transport_controls_and_status(self, engine, client):
        await engine.start(run_timers=False)
        async with client:
            assert (await client.post("/api/transport/disconnect")).json()["state"] == "disconnected"
            assert (await client.get("/health")).json()["transport"] == "disconnected"
            assert (await client.post("/api/transport/reconnect")).json()["ok"] is True
            status = (await client.get("/api/status")).json()
        assert status["transport"] == "connected"
