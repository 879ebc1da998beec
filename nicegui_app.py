"""NiceGUI dashboard for glucotrack.

Glucose timeline with meals and treatments, period navigation by buttons or
swipe, window summary cards and a realtime chat with the care team.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from nicegui import Client, app, ui

from glucotrack.backend_client import BackendClient
from glucotrack.cache import ViewCache
from glucotrack.charts import build_timeline_chart, build_tir_chart, create_placeholder_chart
from glucotrack.chat import ChatSession, SessionStatus
from glucotrack.config import (
    BACKEND_API_KEY,
    BACKEND_URL,
    REQUEST_TIMEOUT,
    STORAGE_SECRET,
    STORAGE_SECRET_FROM_ENV,
)
from glucotrack.conversations import get_conversations, unread_total
from glucotrack.data_services import TimelineService
from glucotrack.messages import InMemoryMessageStore, MessageStore, RelayingMessageStore, RestMessageStore
from glucotrack.navigation import PeriodNavigator
from glucotrack.realtime import LocalRealtimeHub
from glucotrack.repository import HealthRepository
from glucotrack.state import ChartView, ViewStatus
from glucotrack.windows import Granularity

logging.basicConfig(
    level=os.environ.get("GLUCOTRACK_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("glucotrack.dashboard")

DEFAULT_THEME = "dark"
THEME_STORAGE_KEY = "ui_theme"
DARK_BODY_CLASSES = "dark-theme bg-slate-950 text-slate-100"
LIGHT_BODY_CLASSES = "light-theme bg-slate-50 text-slate-900"

RANGE_OPTIONS = {
    Granularity.DAY.value: "Day",
    Granularity.WEEK.value: "Week",
    Granularity.MONTH.value: "Month",
    Granularity.TWO_MONTHS.value: "2 months",
    Granularity.THREE_MONTHS.value: "3 months",
}

# Process-wide realtime hub; every chat session served by this process listens here.
HUB = LocalRealtimeHub()
_LOCAL_STORE = InMemoryMessageStore(HUB)


@dataclass
class DashboardRefs:
    period_label: Any
    status_label: Any
    timeline_plot: Any
    tir_plot: Any
    next_button: Any
    stats: Dict[str, Any] = field(default_factory=dict)


def apply_theme_classes(theme: str) -> None:
    ui.query("body").classes(
        remove=f"{DARK_BODY_CLASSES} {LIGHT_BODY_CLASSES}",
        add=LIGHT_BODY_CLASSES if theme == "light" else DARK_BODY_CLASSES,
    )


def get_backend_client(access_token: Optional[str] = None) -> Optional[BackendClient]:
    if not BACKEND_URL:
        return None
    return BackendClient(BACKEND_URL, api_key=BACKEND_API_KEY, access_token=access_token, timeout=REQUEST_TIMEOUT)


def get_message_store(client: Optional[BackendClient]) -> MessageStore:
    if client is None:
        return _LOCAL_STORE
    return RelayingMessageStore(RestMessageStore(client), HUB)


def render_storage_secret_callout() -> None:
    if STORAGE_SECRET_FROM_ENV:
        return
    with ui.card().classes("w-full bg-amber-100 text-amber-950 border border-amber-500 font-mono px-4 py-3"):
        with ui.row().classes("items-start gap-3"):
            ui.icon("warning_amber").classes("text-amber-600 text-3xl")
            ui.label(
                "Define STORAGE_SECRET to keep your profile settings after a restart."
            ).classes("text-xs leading-relaxed text-amber-900")


def update_stats(refs: DashboardRefs, view: ChartView) -> None:
    summary = view.summary
    refs.stats["average"].text = f"{summary.average_glucose} mg/dL" if summary.average_glucose is not None else "--"
    refs.stats["carbs"].text = f"{summary.total_carbs:g} g"
    refs.stats["insulin"].text = f"{summary.total_insulin:g} u"
    refs.stats["hba1c"].text = f"{summary.estimated_hba1c:.1f}%" if summary.estimated_hba1c is not None else "--"
    refs.stats["status"].text = (summary.latest_status or "--").upper()


def render_view(refs: DashboardRefs, view: ChartView, theme: str) -> None:
    refs.period_label.text = view.label
    if view.status is ViewStatus.STALE:
        refs.status_label.text = f"Offline: showing last data ({view.error})"
    elif view.status is ViewStatus.ERROR:
        refs.status_label.text = f"Could not load data: {view.error}"
    elif view.status is ViewStatus.EMPTY:
        refs.status_label.text = "No entries in this period"
    else:
        refs.status_label.text = f"{view.summary.reading_count} readings"
    if view.malformed:
        refs.status_label.text += f" · {view.malformed} entries skipped"

    refs.timeline_plot.figure = build_timeline_chart(view, theme=theme)
    refs.timeline_plot.update()
    refs.tir_plot.figure = build_tir_chart(view.summary, theme=theme)
    refs.tir_plot.update()
    update_stats(refs, view)


@ui.page("/")
async def index_page(client: Client) -> None:
    storage = app.storage.user
    theme = storage.get(THEME_STORAGE_KEY) or DEFAULT_THEME
    apply_theme_classes(theme)
    ui.page_title("glucotrack")

    subject_id = storage.get("subject_id") or ""
    access_token = storage.get("access_token") or None
    backend = get_backend_client(access_token)
    repository = HealthRepository(backend) if backend is not None else None
    service = TimelineService(repository, subject_id, cache=ViewCache()) if repository and subject_id else None
    navigator = PeriodNavigator(storage.get("granularity") or Granularity.DAY)
    chat = ChatSession(subject_id or "me", get_message_store(backend), HUB)
    chat_dirty = {"value": True}
    refs: Optional[DashboardRefs] = None

    async def reload() -> None:
        if refs is None:
            return
        refs.next_button.set_enabled(navigator.can_go_next)
        if service is None:
            refs.period_label.text = "Not connected"
            refs.status_label.text = "Set GLUCOTRACK_BACKEND_URL and your subject id to load data"
            return
        view = await service.load(navigator.granularity, navigator.offset)
        if view is not None:
            render_view(refs, view, storage.get(THEME_STORAGE_KEY) or DEFAULT_THEME)

    reload_tasks: Set[asyncio.Task] = set()

    def on_reload_done(task: asyncio.Task) -> None:
        reload_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Timeline reload failed", exc_info=task.exception())

    def schedule_reload(_offset: int) -> None:
        task = asyncio.create_task(reload())
        reload_tasks.add(task)
        task.add_done_callback(on_reload_done)

    navigator.add_listener(schedule_reload)

    def on_theme_toggle(value: bool) -> None:
        storage[THEME_STORAGE_KEY] = "light" if value else "dark"
        apply_theme_classes(storage[THEME_STORAGE_KEY])
        if service is not None and service.last_good is not None and refs is not None:
            render_view(refs, service.last_good, storage[THEME_STORAGE_KEY])

    def on_range_change(value: str) -> None:
        storage["granularity"] = value
        navigator.on_granularity_change(value)

    def save_profile(subject: str, token: str) -> None:
        storage["subject_id"] = subject.strip()
        storage["access_token"] = token.strip()
        ui.navigate.reload()

    with ui.column().classes("w-full max-w-6xl mx-auto py-8 gap-6"):
        with ui.row().classes("items-center gap-3 w-full flex-wrap"):
            ui.label("glucotrack").classes("text-3xl font-bold text-violet-300 tracking-tight")
            with ui.row().classes("items-center gap-3 ml-auto shrink-0"):
                ui.label("Theme").classes("text-xs uppercase tracking-widest text-slate-400")
                ui.switch(value=theme == "light", on_change=lambda e: on_theme_toggle(e.value)).props(
                    'dense color="purple"'
                ).classes("theme-toggle-simple")

        render_storage_secret_callout()

        with ui.expansion("Profile", value=not subject_id).classes("w-full profile-card"):
            subject_input = ui.input("Subject id", value=subject_id).classes("w-full")
            token_input = ui.input("Access token", password=True, password_toggle_button=True).classes("w-full")
            ui.button("Save", on_click=lambda: save_profile(subject_input.value, token_input.value))

        with ui.card().classes("w-full timeline-card") as timeline_card:
            with ui.row().classes("items-center w-full gap-2"):
                ui.button(icon="chevron_left", on_click=navigator.previous).props("flat round").classes("prev-button")
                period_label = ui.label("--").classes("text-lg font-semibold period-label")
                next_button = ui.button(icon="chevron_right", on_click=navigator.next).props("flat round")
                next_button.classes("next-button")
                ui.button("Today", on_click=navigator.reset_to_present).props("flat dense")
                ui.select(
                    RANGE_OPTIONS,
                    value=navigator.granularity.value,
                    on_change=lambda e: on_range_change(e.value),
                ).props("dense outlined").classes("ml-auto range-select")
            status_label = ui.label("").classes("text-xs text-slate-400 font-mono")
            timeline_plot = ui.plotly(create_placeholder_chart(theme=theme)).classes("w-full")

        drag_start: Dict[str, float] = {}
        timeline_card.on("pointerdown", lambda e: drag_start.update(x=float(e.args.get("clientX", 0))), ["clientX"])
        timeline_card.on(
            "pointerup",
            lambda e: navigator.handle_drag(drag_start.pop("x", float(e.args.get("clientX", 0))), float(e.args.get("clientX", 0))),
            ["clientX"],
        )

        with ui.row().classes("w-full gap-4 stats-row"):
            stats = {}
            for key, title in [
                ("average", "Average"),
                ("carbs", "Carbs"),
                ("insulin", "Insulin"),
                ("hba1c", "Est. HbA1c"),
                ("status", "Latest"),
            ]:
                with ui.card().classes("grow stat-card"):
                    ui.label(title).classes("text-xs uppercase tracking-widest text-slate-400")
                    stats[key] = ui.label("--").classes("text-xl font-bold")

        with ui.card().classes("w-full tir-card"):
            ui.label("Time in range").classes("text-xs uppercase tracking-widest text-slate-400")
            tir_plot = ui.plotly(create_placeholder_chart(height=300, theme=theme)).classes("w-full")

        with ui.card().classes("w-full chat-card"):
            with ui.row().classes("items-center w-full gap-2"):
                ui.label("Messages").classes("text-lg font-semibold")
                unread_badge = ui.badge("0").props("color=red")
                chat_status = ui.label("").classes("text-xs text-slate-400 ml-auto chat-status")
            counterparty_input = ui.input("Chat with (user id)").classes("w-full counterparty-input")
            message_log = ui.column().classes("w-full gap-1 message-log")
            with ui.row().classes("w-full items-center gap-2"):
                message_input = ui.input("Message").classes("grow message-input")
                send_button = ui.button("Send").classes("send-button")

    refs = DashboardRefs(
        period_label=period_label,
        status_label=status_label,
        timeline_plot=timeline_plot,
        tir_plot=tir_plot,
        next_button=next_button,
        stats=stats,
    )

    def render_messages() -> None:
        if not chat_dirty["value"]:
            return
        chat_dirty["value"] = False
        message_log.clear()
        with message_log:
            for message in chat.messages:
                mine = message.sender_id == chat.viewer_id
                ui.label(message.body).classes(
                    "self-end bg-violet-600 text-white rounded-xl px-3 py-1" if mine
                    else "self-start bg-slate-700 text-slate-100 rounded-xl px-3 py-1"
                )
        chat_status.text = "live" if chat.status is SessionStatus.SUBSCRIBED else chat.status.value

    def on_message(_message: Any) -> None:
        chat_dirty["value"] = True

    async def refresh_unread() -> None:
        result = await asyncio.to_thread(get_conversations, get_message_store(backend), chat.viewer_id)
        if result.ok:
            unread_badge.text = str(unread_total(result.value))

    async def open_conversation() -> None:
        counterparty = (counterparty_input.value or "").strip()
        if not counterparty:
            return
        result = await chat.open(counterparty, on_message)
        chat_dirty["value"] = True
        if not result.ok:
            ui.notify(f"Chat unavailable: {result.error}", type="warning")
        await refresh_unread()

    async def send_message() -> None:
        if chat.counterparty_id is None or not (message_input.value or "").strip():
            return
        result = await chat.send(message_input.value)
        if result.ok:
            message_input.value = ""
        else:
            ui.notify(f"Message not sent: {result.error}", type="negative")

    counterparty_input.on("keydown.enter", open_conversation)
    message_input.on("keydown.enter", send_message)
    send_button.on_click(send_message)
    ui.timer(0.5, render_messages)
    ui.timer(30.0, refresh_unread)

    async def cleanup() -> None:
        navigator.dispose()
        for task in list(reload_tasks):
            task.cancel()
        if service is not None:
            service.close()
        await chat.close()

    client.on_disconnect(cleanup)

    await client.connected()
    await reload()
    await refresh_unread()


@ui.page("/health")
def healthcheck() -> None:
    """Health check endpoint."""
    ui.label("ok")


if __name__ in {"__main__", "__mp_main__"}:
    port = int(os.environ.get("PORT", "8080"))
    reload_enabled = os.environ.get("NICEGUI_RELOAD", "false").lower() in {"1", "true", "yes"}

    ui.run(
        title="glucotrack",
        host="0.0.0.0",
        port=port,
        reload=reload_enabled,
        storage_secret=STORAGE_SECRET,
    )
