"""
Delivery Engine — owns every long-lived piece of the scheduler.

Bootstrap order (start):
    1. session  — load credentials from the Auth table
    2. transport — initialize with those credentials, connect
    3. tables   — create Schedule / Birthdays / Auth if missing
    4. startup passes — media reap, reminder run
    5. timers   — queue poll, daily reminder check, media cleanup

A bootstrap step that fails is logged and the engine keeps going: the queue
poll idles while the transport is down and store-backed passes retry on their
next tick.
"""
from __future__ import annotations

import structlog
from datetime import datetime, time
from typing import Any, Optional
from zoneinfo import ZoneInfo

from channels.base import DeliveryTransport
from channels.session import SessionState, SessionStore
from channels.whatsapp_adapter import WhatsAppCloudTransport
from config.settings import Settings, TransportConfig
from core.events import EventBus, TRANSPORT_STATE
from core.generator import LLMTextGenerator, TextGenerator
from core.timers import Clock, DailyTask, PeriodicTask, TimerHandle
from database.jobs import JobStore
from database.sources import ReminderSourceStore
from database.store_base import BaseRowStore, StoreError
from database.store_factory import create_row_store
from job_queue.processor import QueueProcessor
from media.lifecycle import MediaLifecycleManager
from models.schemas import TransportState, format_timestamp
from reminders.producer import ReminderProducer

logger = structlog.get_logger()


def create_transport(config: TransportConfig) -> DeliveryTransport:
    if config.type == "whatsapp":
        return WhatsAppCloudTransport()
    raise ValueError(f"Unknown transport type: {config.type}")


class DeliveryEngine:
    """
    Usage:
        engine = DeliveryEngine(settings)
        await engine.start()
        ...
        await engine.stop()
    """

    def __init__(
        self,
        settings: Settings,
        rows: Optional[BaseRowStore] = None,
        transport: Optional[DeliveryTransport] = None,
        generator: Optional[TextGenerator] = None,
        clock: Optional[Clock] = None,
        events: Optional[EventBus] = None,
    ):
        self.settings = settings
        self.tz = ZoneInfo(settings.timezone)
        self.clock = clock or Clock()
        self.events = events or EventBus()

        self.rows = rows or create_row_store(settings.store)
        self.jobs = JobStore(self.rows, settings.store.schedule_table)
        self.sources = ReminderSourceStore(self.rows, settings.store.birthdays_table)
        self.session = SessionStore(self.rows, settings.store.auth_table)

        self.transport = transport or create_transport(settings.transport)
        self.transport.connection.set_listener(self._on_transport_state)

        if generator is None and settings.llm.api_keys:
            generator = LLMTextGenerator(settings.llm)
        self.generator = generator

        self.media = MediaLifecycleManager(settings.media, self.jobs, self.clock)
        self.processor = QueueProcessor(
            self.jobs, self.transport, self.media,
            config=settings.queue, events=self.events, clock=self.clock,
        )
        self.producer = ReminderProducer(
            self.sources, self.jobs, settings.reminders, self.tz,
            generator=self.generator, events=self.events, clock=self.clock,
        )

        self.tasks: list[PeriodicTask | DailyTask] = []
        self.handles: list[TimerHandle] = []
        self.started_at: Optional[datetime] = None

    def _on_transport_state(self, previous: TransportState, current: TransportState) -> None:
        self.events.emit(TRANSPORT_STATE, state=current.value)

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self, run_timers: bool = True) -> None:
        session = await self._load_session()
        await self.transport.initialize(self.settings.transport, session.credentials)
        if await self.transport.connect():
            await self._remember_connection(session)

        await self.ensure_tables()
        await self._startup_passes()

        self.tasks = self._build_tasks()
        if run_timers:
            self.handles = [task.start() for task in self.tasks]
        self.started_at = self.clock.now()
        logger.info("delivery_engine_started", transport=self.transport.state.value,
                    timers=[task.name for task in self.tasks] if run_timers else [])

    async def stop(self) -> None:
        for handle in self.handles:
            handle.cancel()
        for handle in self.handles:
            await handle.wait()
        self.handles = []
        await self.transport.shutdown()
        await self.rows.close()
        logger.info("delivery_engine_stopped")

    def _build_tasks(self) -> list[PeriodicTask | DailyTask]:
        cfg = self.settings
        tasks: list[PeriodicTask | DailyTask] = [
            PeriodicTask("queue_poll", cfg.queue.poll_interval_s, self.processor.sweep, self.clock),
            PeriodicTask("media_cleanup", cfg.media.cleanup_interval_hours * 3600, self.media.reap, self.clock),
        ]
        if cfg.reminders.enabled:
            at = time(cfg.reminders.trigger_hour, cfg.reminders.trigger_minute, cfg.reminders.trigger_second)
            tasks.append(DailyTask("reminder_check", at, self.tz, self.producer.run, self.clock))
        return tasks

    async def _load_session(self) -> SessionState:
        try:
            await self.session.ensure_table()
            return await self.session.load()
        except StoreError as e:
            logger.error("session_load_failed", error=str(e))
            return SessionState()

    async def _remember_connection(self, session: SessionState) -> None:
        credentials = dict(session.credentials)
        credentials["last_connected_at"] = format_timestamp(self.clock.now())
        try:
            await self.session.save_credentials(credentials)
        except StoreError as e:
            logger.warning("session_save_failed", error=str(e))

    async def ensure_tables(self) -> dict[str, bool]:
        """Create missing tables. Returns {table: created}."""
        created = {}
        for view in (self.jobs, self.sources, self.session):
            try:
                created[view.table] = await view.ensure_table()
            except StoreError as e:
                logger.error("ensure_table_failed", table=view.table, error=str(e))
        return created

    async def _startup_passes(self) -> None:
        try:
            await self.media.reap()
        except StoreError as e:
            logger.error("startup_media_reap_failed", error=str(e))
        if self.settings.reminders.enabled:
            try:
                await self.producer.run()
            except StoreError as e:
                logger.error("startup_reminder_run_failed", error=str(e))

    # ── Operator actions ──────────────────────────────────────

    async def reconnect(self) -> bool:
        return await self.transport.reconnect()

    async def disconnect(self) -> None:
        await self.transport.disconnect()

    # ── Introspection ─────────────────────────────────────────

    async def status(self) -> dict[str, Any]:
        try:
            pending: Optional[int] = await self.jobs.count_pending()
        except StoreError as e:
            logger.warning("status_pending_count_failed", error=str(e))
            pending = None
        connection = self.transport.connection
        return {
            "transport": connection.state.value,
            "connected": connection.is_connected,
            "last_error": connection.last_error or None,
            "state_changed_at": format_timestamp(connection.changed_at),
            "sweep_running": self.processor.running,
            "last_sweep_at": format_timestamp(self.processor.last_sweep_at),
            "last_sweep": self.processor.last_stats,
            "pending": pending,
            "started_at": format_timestamp(self.started_at),
            "timers": [task.name for task in self.tasks],
            "timezone": self.settings.timezone,
        }
