# analytics_service/main.py

"""
Analytics Service
Ultrafiltration summaries for the dashboard, trend chart and history screens.
Reads exchanges from the exchange service, caches summaries in Redis and drops
a patient's cached summaries whenever one of their records changes.
"""

import json
import logging

# =====================================================
# Standard Library Imports
# =====================================================
import os
import threading
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

# =====================================================
# Third-Party Imports
# =====================================================
import httpx
import redis
from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

# =====================================================
# Local Imports
# =====================================================
from analytics_service.models.schemas import (
    AverageSummary,
    DependencyStatus,
    ExchangeSummary,
    HealthCheckResponse,
    HistoryGroup,
    HistoryResponse,
    TodaySummary,
    TrendPointOut,
    TrendResponse,
)
from careassist.aggregate import (
    daily_total,
    group_by_civil_date,
    records_for_day,
    records_in_window,
    rolling_average,
)
from careassist.civil import civil_now, day_bounds, window_start
from careassist.config import EXCHANGE_CHANNEL, EXCHANGE_SERVICE_URL
from careassist.errors import InvalidInputError
from careassist.events import RecordChange, RecordChangeHub
from careassist.filters import FilterConfig, apply_filters
from careassist.records import PDExchange
from careassist.trend import TrendWindow, build_trend
from careassist.uf import classify_uf, format_uf, round_half_up

# =====================================================
# Configuration
# =====================================================
logger = logging.getLogger("analytics-service")
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)

# Redis Config
REDIS_HOST = os.environ.get("REDIS_HOST", "localhost")
REDIS_PORT = int(os.environ.get("REDIS_PORT", 6379))

SUMMARY_CACHE_TTL_SECONDS = int(os.environ.get("SUMMARY_CACHE_TTL_SECONDS", 300))

# Initialize Redis (Sync for API, separate instance for listener)
redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, decode_responses=True)

# Global flag to stop background threads on shutdown
STOP_EVENT = threading.Event()

# Change events are fanned out to in-process subscribers
change_hub = RecordChangeHub()

# =====================================================
# Summary Cache
# =====================================================


def _registry_key(patient_id) -> str:
    return f"summary-keys:{patient_id}"


def _cache_get(cache_key: str) -> Optional[str]:
    try:
        return redis_client.get(cache_key)
    except RedisError:
        logger.debug("Redis error during summary cache read", exc_info=True)
        return None


def _cache_put(patient_id: uuid.UUID, cache_key: str, response_obj: BaseModel) -> None:
    try:
        redis_client.setex(cache_key, SUMMARY_CACHE_TTL_SECONDS, response_obj.model_dump_json())
        # Track the key so a change event can drop every summary for the patient
        redis_client.sadd(_registry_key(patient_id), cache_key)
        redis_client.expire(_registry_key(patient_id), SUMMARY_CACHE_TTL_SECONDS)
    except RedisError:
        logger.debug("Redis error during summary cache write", exc_info=True)


def invalidate_patient_summaries(patient_id: uuid.UUID, changed_fields: Dict[str, Any]) -> None:
    """Record change subscriber: forget every cached summary for the patient."""
    registry = _registry_key(patient_id)
    try:
        keys = list(redis_client.smembers(registry))
        redis_client.delete(registry, *keys)
    except RedisError as e:
        logger.warning("Summary cache invalidation failed for patient %s: %s", patient_id, e)
        return
    logger.info(
        "Dropped %d cached summaries for patient %s (%s %s)",
        len(keys),
        patient_id,
        changed_fields.get("table"),
        changed_fields.get("id"),
    )


change_hub.subscribe(invalidate_patient_summaries)

# =====================================================
# Background Logic
# =====================================================


def process_change_event(data: dict) -> None:
    """Turn a published record change into hub notifications."""
    try:
        change = RecordChange.from_event(data)
    except (KeyError, ValueError, TypeError) as e:
        logger.error("Ignoring malformed change event: %s", e)
        return
    change_hub.publish(change)


def redis_listener():
    """
    Blocking loop that listens to Redis Pub/Sub.
    Run in a separate thread.
    """
    logger.info("Starting Redis Listener...")
    r = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, decode_responses=True)
    pubsub = r.pubsub()
    try:
        pubsub.subscribe(EXCHANGE_CHANNEL)

        # Use a loop with a timeout to allow checking STOP_EVENT
        while not STOP_EVENT.is_set():
            message = pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if message and message["type"] == "message":
                try:
                    data = json.loads(message["data"])
                except (TypeError, ValueError) as e:
                    logger.error("Invalid message format: %s", e)
                    continue
                process_change_event(data)
    except RedisError as e:
        logger.error("Redis Listener failed: %s", e)
    finally:
        pubsub.close()
        r.close()
    logger.info("Redis Listener Stopped.")


# =====================================================
# Lifespan & App Setup
# =====================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    STOP_EVENT.clear()
    listener_thread = threading.Thread(target=redis_listener, daemon=True)
    listener_thread.start()

    yield

    # --- Shutdown ---
    STOP_EVENT.set()
    listener_thread.join(timeout=2.0)


root_path = os.getenv("ROOT_PATH", "/analytics")

app = FastAPI(
    title="Analytics Service",
    lifespan=lifespan,
    root_path=root_path,
)


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_ts = time.time()
        logger.info("req_id=%s start method=%s path=%s", req_id, request.method, request.url.path)
        response = await call_next(request)
        duration_ms = int((time.time() - start_ts) * 1000)
        response.headers["X-Request-ID"] = req_id
        response.headers["X-Response-Time-ms"] = str(duration_ms)
        logger.info(
            "req_id=%s end status=%s path=%s duration_ms=%s",
            req_id,
            response.status_code,
            request.url.path,
            duration_ms,
        )
        return response


app.add_middleware(LoggingMiddleware)


# =====================================================
# Helpers
# =====================================================


def _fetch_pd_exchanges(
    patient_id: uuid.UUID,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    order: str = "asc",
) -> List[PDExchange]:
    """Pull PD exchanges from the exchange service."""
    params = {"order": order}
    if start_time is not None:
        params["start_time"] = start_time.isoformat()
    if end_time is not None:
        params["end_time"] = end_time.isoformat()

    url = f"{EXCHANGE_SERVICE_URL}/pd/{patient_id}"
    try:
        with httpx.Client(timeout=3.0) as client:
            resp = client.get(url, params=params)
    except httpx.RequestError as e:
        raise HTTPException(status_code=502, detail=f"Exchange service unavailable: {e}")

    if resp.status_code == 404:
        raise HTTPException(status_code=404, detail="Patient not found")
    if resp.status_code != 200:
        logger.error("Exchange service returned %s for patient %s", resp.status_code, patient_id)
        raise HTTPException(status_code=502, detail="Exchange service error")
    return [PDExchange.model_validate(row) for row in resp.json() or []]


# =====================================================
# Routes: Dashboard
# =====================================================


@app.get("/{patient_id}/today", response_model=TodaySummary)
def today_summary(patient_id: uuid.UUID):
    """Today's total UF and today's exchanges, earliest first."""
    day = civil_now().date()
    cache_key = f"summary:{patient_id}:today:{day.isoformat()}"
    cached = _cache_get(cache_key)
    if cached:
        return TodaySummary.model_validate_json(cached)

    start, end = day_bounds(day)
    records = _fetch_pd_exchanges(patient_id, start_time=start, end_time=end)
    todays = records_for_day(records, day)
    total = daily_total(records, day)

    response_obj = TodaySummary(
        patient_id=patient_id,
        day=day,
        total_uf=total,
        total_display=format_uf(total),
        direction=classify_uf(total) if todays else None,
        exchanges=[ExchangeSummary.from_record(r) for r in todays],
    )
    _cache_put(patient_id, cache_key, response_obj)
    return response_obj


@app.get("/{patient_id}/average", response_model=AverageSummary)
def average_summary(patient_id: uuid.UUID, days: int = Query(7, ge=1, le=365)):
    """Mean UF per exchange over the trailing ``days`` civil days."""
    now = civil_now()
    cache_key = f"summary:{patient_id}:average:{days}:{now.date().isoformat()}"
    cached = _cache_get(cache_key)
    if cached:
        return AverageSummary.model_validate_json(cached)

    records = _fetch_pd_exchanges(patient_id, start_time=window_start(days, now))
    average = rolling_average(records, days, now)
    response_obj = AverageSummary(
        patient_id=patient_id,
        window_days=days,
        average_uf=average,
        average_display=format_uf(round_half_up(average)),
        count=len(records_in_window(records, days, now)),
    )
    _cache_put(patient_id, cache_key, response_obj)
    return response_obj


# =====================================================
# Routes: Trend
# =====================================================


@app.get("/{patient_id}/trend", response_model=TrendResponse)
def uf_trend(patient_id: uuid.UUID, window: TrendWindow = TrendWindow.SEVEN_DAYS):
    now = civil_now()
    cache_key = f"summary:{patient_id}:trend:{window.value}:{now.date().isoformat()}"
    cached = _cache_get(cache_key)
    if cached:
        return TrendResponse.model_validate_json(cached)

    records = _fetch_pd_exchanges(patient_id, start_time=window_start(window.days, now))
    series = build_trend(records, window, now)
    if series is None:
        response_obj = TrendResponse(patient_id=patient_id, window=window, state="empty")
    else:
        response_obj = TrendResponse(
            patient_id=patient_id,
            window=window,
            state="loaded",
            points=[TrendPointOut(label=p.label, value=p.value) for p in series.points],
            retention=series.retention,
        )
    _cache_put(patient_id, cache_key, response_obj)
    return response_obj


# =====================================================
# Routes: History
# =====================================================


@app.get("/{patient_id}/history", response_model=HistoryResponse)
def filtered_history(
    patient_id: uuid.UUID,
    weight_category: str = "",
    uf_min: str = "",
    uf_max: str = "",
    strength: str = "",
    date: str = "",
):
    """
    PD history newest first, filtered and grouped by civil date.
    Blank query values mean "no constraint". Not cached: filter combinations
    are open-ended.
    """
    try:
        config = FilterConfig.from_inputs(
            weight_category=weight_category,
            uf_min=uf_min,
            uf_max=uf_max,
            strength=strength,
            date=date,
        )
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    records = _fetch_pd_exchanges(patient_id, order="desc")
    visible = apply_filters(records, config)
    groups = [
        HistoryGroup(
            date=group.date,
            total_uf=group.total_uf,
            exchanges=[ExchangeSummary.from_record(r) for r in group.records],
        )
        for group in group_by_civil_date(visible).values()
    ]
    return HistoryResponse(
        patient_id=patient_id,
        total=len(records),
        visible=len(visible),
        summary=f"Showing {len(visible)} of {len(records)} sessions",
        groups=groups,
    )


# =====================================================
# Health Check
# =====================================================


@app.get("/health", response_model=HealthCheckResponse)
def health():
    dependencies = {}

    # 1. Redis
    start = time.time()
    try:
        if redis_client.ping():
            dependencies["redis"] = DependencyStatus(
                status="healthy", response_time_ms=int((time.time() - start) * 1000)
            )
        else:
            dependencies["redis"] = DependencyStatus(status="unhealthy", error="Ping failed")
    except RedisError as e:
        dependencies["redis"] = DependencyStatus(status="unhealthy", error=str(e))

    # 2. Exchange Service
    start = time.time()
    try:
        with httpx.Client(timeout=2.0) as client:
            resp = client.get(f"{EXCHANGE_SERVICE_URL}/health")
        if resp.status_code == 200:
            dependencies["exchange-service"] = DependencyStatus(
                status="healthy", response_time_ms=int((time.time() - start) * 1000)
            )
        else:
            dependencies["exchange-service"] = DependencyStatus(
                status="unhealthy", response_time_ms=int((time.time() - start) * 1000)
            )
    except httpx.HTTPError as e:
        dependencies["exchange-service"] = DependencyStatus(status="unhealthy", error=str(e))

    overall_status = (
        "healthy" if all(d.status == "healthy" for d in dependencies.values()) else "unhealthy"
    )

    response = HealthCheckResponse(
        service="analytics-service", status=overall_status, dependencies=dependencies
    )

    if overall_status == "unhealthy":
        raise HTTPException(status_code=503, detail=response.model_dump())

    return response
