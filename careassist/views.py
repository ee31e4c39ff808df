"""Stateful views over one patient's records.

Each view owns the records it fetched. Local state only changes after the
store has confirmed a mutation, and then from the store's returned row.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from careassist.aggregate import (
    DayGroup,
    daily_total,
    group_by_civil_date,
    records_for_day,
    rolling_average,
)
from careassist.civil import civil_date_key, civil_now, day_bounds, format_clock, window_start
from careassist.context import PatientContext
from careassist.filters import FilterConfig, apply_filters
from careassist.forms import HDExchangeForm, parse_number, submit_hd_exchange
from careassist.loading import LoadState, LoadTracker
from careassist.records import HDExchange, PDExchange
from careassist.stores import RecordStore
from careassist.trend import TrendSeries, TrendWindow, build_trend
from careassist.uf import format_number, format_uf, round_half_up, ultrafiltration

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _newest_first(records: List[PDExchange]) -> List[PDExchange]:
    return sorted(records, key=lambda r: r.timestamp or datetime.min, reverse=True)


# =====================================================
# History
# =====================================================
@dataclass
class EditDraft:
    """In-progress edit of one PD row; ``uf`` follows fill/drain as typed."""

    exchange_id: uuid.UUID
    fill_volume: Any = ""
    drain_volume: Any = ""
    weight: Any = ""
    baxter_strength: str = ""
    notes: str = ""

    @classmethod
    def from_record(cls, record: PDExchange) -> "EditDraft":
        def blank(value):
            return "" if value is None else format_number(value)

        return cls(
            exchange_id=record.id,
            fill_volume=blank(record.fill_volume),
            drain_volume=blank(record.drain_volume),
            weight=blank(record.weight),
            baxter_strength=record.baxter_strength or "",
            notes=record.notes or "",
        )

    @property
    def uf(self) -> Optional[float]:
        # blanks count as 0 while editing
        return ultrafiltration(self.drain_volume or 0, self.fill_volume or 0)

    def to_update(self) -> Dict[str, Any]:
        """Fields sent to the store. ``uf`` is never sent; the store derives it."""
        return {
            "fill_volume": parse_number(self.fill_volume, "Fill volume"),
            "drain_volume": parse_number(self.drain_volume, "Drain volume"),
            "weight": parse_number(self.weight, "Weight"),
            "baxter_strength": self.baxter_strength or None,
            "notes": self.notes,
        }


class HistoryView:
    """PD history: fetch, staged filters, day groups, edit and delete."""

    def __init__(self, ctx: PatientContext, store: RecordStore):
        self.ctx = ctx
        self.store = store
        self.loader: LoadTracker[List[PDExchange]] = LoadTracker()
        self.pending = FilterConfig()
        self._applied: Optional[FilterConfig] = None
        self.editing: Optional[EditDraft] = None

    @property
    def state(self) -> LoadState:
        return self.loader.state

    @property
    def sessions(self) -> List[PDExchange]:
        return list(self.loader.state.data or [])

    async def refresh(self) -> LoadState:
        return await self.loader.run(
            lambda: self.store.list_pd(self.ctx.patient_id, descending=True)
        )

    # --- Filters ---
    def stage(self, **changes) -> FilterConfig:
        """Edit the pending configuration. Has no visible effect until :meth:`apply`."""
        self.pending = replace(self.pending, **changes)
        return self.pending

    def stage_inputs(self, **raw) -> FilterConfig:
        self.pending = FilterConfig.from_inputs(**raw)
        return self.pending

    def apply(self) -> List[PDExchange]:
        self._applied = self.pending
        return self.visible()

    def clear(self) -> List[PDExchange]:
        self.pending = FilterConfig()
        self._applied = None
        return self.visible()

    @property
    def filters_applied(self) -> bool:
        return self._applied is not None

    def visible(self) -> List[PDExchange]:
        if self._applied is None:
            return self.sessions
        return apply_filters(self.sessions, self._applied)

    def grouped(self) -> Dict[str, DayGroup]:
        return group_by_civil_date(self.visible())

    def summary_line(self) -> str:
        return f"Showing {len(self.visible())} of {len(self.sessions)} sessions"

    # --- Edit / delete ---
    def start_edit(self, record: PDExchange) -> EditDraft:
        self.editing = EditDraft.from_record(record)
        return self.editing

    def cancel_edit(self) -> None:
        self.editing = None

    async def save_edit(self) -> PDExchange:
        """Send the draft; on success swap in the store's row. Errors propagate
        and leave both the list and the draft untouched."""
        if self.editing is None:
            raise RuntimeError("No edit in progress")
        draft = self.editing
        stored = await self.store.update_pd(draft.exchange_id, draft.to_update())
        self.loader.replace_data(
            [stored if s.id == draft.exchange_id else s for s in self.sessions]
        )
        self.editing = None
        return stored

    async def delete(self, exchange_id: uuid.UUID, confirm: Callable[[], bool]) -> bool:
        if not confirm():
            return False
        await self.store.delete_pd(exchange_id)
        self.loader.replace_data([s for s in self.sessions if s.id != exchange_id])
        return True

    # --- Change notification ---
    def on_record_changed(self, patient_id: uuid.UUID, changed_fields: Dict[str, Any]) -> None:
        if patient_id != self.ctx.patient_id or changed_fields.get("table") != "pd_exchanges":
            return
        if self.loader.state.data is None:
            return
        record_id = changed_fields.get("id")
        logger.debug("Applying pushed change for exchange %s", record_id)
        sessions = self.sessions

        if changed_fields.get("deleted"):
            sessions = [s for s in sessions if str(s.id) != str(record_id)]
        else:
            updated = False
            for i, s in enumerate(sessions):
                if str(s.id) == str(record_id):
                    merged = s.model_dump()
                    merged.update(changed_fields)
                    sessions[i] = PDExchange.model_validate(merged)
                    updated = True
            if not updated:
                # only inserts carry a full row
                if changed_fields.get("action") != "insert":
                    logger.debug("Ignoring change for unloaded exchange %s", record_id)
                    return
                sessions.append(PDExchange.model_validate(changed_fields))
        self.loader.replace_data(_newest_first(sessions))


# =====================================================
# Trend chart
# =====================================================
class TrendPanel:
    def __init__(self, ctx: PatientContext, store: RecordStore, clock: Clock = civil_now):
        self.ctx = ctx
        self.store = store
        self.clock = clock
        self.window = TrendWindow.SEVEN_DAYS
        self.loader: LoadTracker[TrendSeries] = LoadTracker()

    @property
    def state(self) -> LoadState:
        return self.loader.state

    async def load(self, window: Optional[TrendWindow] = None) -> LoadState:
        """(Re)load the chart. Switching window mid-flight supersedes the old load."""
        if window is not None:
            self.window = TrendWindow(window)
        selected = self.window
        now = self.clock()

        async def fetch():
            records = await self.store.list_pd(
                self.ctx.patient_id, start_time=window_start(selected.days, now)
            )
            return build_trend(records, selected, now)

        return await self.loader.run(fetch)


# =====================================================
# Dashboard cards
# =====================================================
@dataclass(frozen=True)
class DailySummary:
    day: date
    total_uf: float
    exchanges: List[PDExchange]


class DashboardView:
    """Today's total UF, today's exchanges and the 7-day average."""

    AVERAGE_WINDOW_DAYS = 7

    def __init__(self, ctx: PatientContext, store: RecordStore, clock: Clock = civil_now):
        self.ctx = ctx
        self.store = store
        self.clock = clock
        self.today: LoadTracker[DailySummary] = LoadTracker(is_empty=lambda s: not s.exchanges)
        self.weekly: LoadTracker[float] = LoadTracker(is_empty=lambda v: v is None)

    async def load_today(self) -> LoadState:
        day = self.clock().date()
        start, end = day_bounds(day)

        async def fetch():
            records = await self.store.list_pd(self.ctx.patient_id, start_time=start, end_time=end)
            return DailySummary(
                day=day,
                total_uf=daily_total(records, day),
                exchanges=records_for_day(records, day),
            )

        return await self.today.run(fetch)

    async def load_weekly_average(self) -> LoadState:
        now = self.clock()

        async def fetch():
            records = await self.store.list_pd(
                self.ctx.patient_id, start_time=window_start(self.AVERAGE_WINDOW_DAYS, now)
            )
            return rolling_average(records, self.AVERAGE_WINDOW_DAYS, now)

        return await self.weekly.run(fetch)

    def weekly_average_display(self) -> str:
        """The loaded average in whole mL, ``-- mL`` until it has loaded."""
        average = self.weekly.state.data
        if average is None:
            return format_uf(None)
        return format_uf(round_half_up(average))


# =====================================================
# Hemodialysis log
# =====================================================
@dataclass(frozen=True)
class HDLine:
    exchange_id: Optional[uuid.UUID]
    date: str
    time: str
    pre_weight: str
    post_weight: str
    uf_display: str
    note: str


def _kg(value: Optional[float]) -> str:
    return "-" if value is None else f"{format_number(value)} kg"


class HDLogView:
    """HD sessions, newest first, with entry and delete."""

    def __init__(self, ctx: PatientContext, store: RecordStore):
        self.ctx = ctx
        self.store = store
        self.loader: LoadTracker[List[HDExchange]] = LoadTracker()
        self.form = HDExchangeForm()

    @property
    def state(self) -> LoadState:
        return self.loader.state

    @property
    def sessions(self) -> List[HDExchange]:
        return list(self.loader.state.data or [])

    async def refresh(self) -> LoadState:
        async def fetch():
            return _newest_first(await self.store.list_hd(self.ctx.patient_id))

        return await self.loader.run(fetch)

    async def submit(self) -> HDExchange:
        """Insert the form's session, then reload the log. Validation and store
        errors propagate and leave the form as typed."""
        record = await submit_hd_exchange(self.ctx, self.form, self.store)
        await self.refresh()
        return record

    async def delete(self, exchange_id: uuid.UUID, confirm: Callable[[], bool]) -> bool:
        if not confirm():
            return False
        await self.store.delete_hd(exchange_id)
        self.loader.replace_data([s for s in self.sessions if s.id != exchange_id])
        return True

    def lines(self) -> List[HDLine]:
        return [
            HDLine(
                exchange_id=s.id,
                date=civil_date_key(s.timestamp),
                time=format_clock(s.timestamp),
                pre_weight=_kg(s.pre_weight),
                post_weight=_kg(s.post_weight),
                uf_display=format_uf(s.uf, "kg"),
                note=s.note or "",
            )
            for s in self.sessions
        ]
