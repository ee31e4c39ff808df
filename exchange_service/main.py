"""Exchange Service

Record store for PD exchanges and HD sessions. Derives UF on every write,
stores optional drain images, and publishes change events to Redis.
"""

# =====================================================
# Standard Library Imports
# =====================================================
import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

# =====================================================
# Third-Party Imports
# =====================================================
import httpx
import psycopg2
import redis
from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse
from redis.exceptions import RedisError
from sqlmodel import Session, select
from starlette.middleware.base import BaseHTTPMiddleware

# =====================================================
# Local Imports
# =====================================================
from careassist.civil import civil_now, utc_now
from careassist.config import EXCHANGE_CHANNEL, PATIENT_SERVICE_URL
from careassist.events import ChangeAction, RecordChange
from careassist.uf import hd_ultrafiltration, ultrafiltration
from exchange_service import storage
from exchange_service.db import close_db_connection, get_session, init_db
from exchange_service.models.models import Dependency, HDExchange, HealthCheckResponse, PDExchange
from exchange_service.models.schemas import (
    HDExchangeIn,
    HDExchangeOut,
    ImageUploadOut,
    PDExchangeIn,
    PDExchangeOut,
    PDExchangeUpdate,
)

# Get the ROOT_PATH environment variable defined in docker-compose
root_path = os.getenv("ROOT_PATH", "/exchanges")

# =====================================================
# Configuration & Middleware
# =====================================================
logger = logging.getLogger("exchange-service")
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Service lifespan for startup/shutdown hooks."""
    try:
        init_db()
        logger.info("Exchange DB initialized successfully.")
    except Exception as e:
        logger.error("Exchange DB initialization failed: %s", e)
    yield
    close_db_connection()


app = FastAPI(title="Exchange Service", lifespan=lifespan, root_path=root_path)


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
# Dependencies (Redis)
# =====================================================
redis_client = redis.Redis(
    host=os.environ.get("REDIS_HOST", "localhost"),
    port=int(os.environ.get("REDIS_PORT", 6379)),
    decode_responses=True,
)


def _ensure_patient_exists(patient_id: uuid.UUID) -> None:
    """Ensure patient exists via patient-service.

    Raises 404 if not found, 502 if patient-service is unavailable.
    """
    url = f"{PATIENT_SERVICE_URL}/{patient_id}"
    try:
        with httpx.Client(timeout=2.0) as client:
            resp = client.get(url)
        if resp.status_code == 200:
            return
        if resp.status_code == 404:
            raise HTTPException(status_code=404, detail="Patient not found")
        raise HTTPException(status_code=502, detail="Patient service error")
    except httpx.RequestError as e:
        raise HTTPException(status_code=502, detail=f"Patient service unavailable: {e}")


def _publish_change(
    patient_id: uuid.UUID,
    table: str,
    action: ChangeAction,
    record_id: uuid.UUID,
    fields: Optional[dict] = None,
) -> None:
    """Best-effort change event; the database stays the source of truth."""
    change = RecordChange(
        patient_id=patient_id,
        table=table,
        action=action,
        record_id=str(record_id),
        fields=fields or {},
    )
    try:
        redis_client.publish(EXCHANGE_CHANNEL, json.dumps(change.to_event()))
    except RedisError as e:
        logger.warning("Redis publish failed for patient %s: %s", patient_id, e)


def _commit(session: Session, row) -> None:
    try:
        session.add(row)
        session.commit()
        session.refresh(row)
    except Exception as e:
        session.rollback()
        raise HTTPException(status_code=500, detail=f"Database Write Failed: {str(e)}") from e


def _time_window(stmt, model, start_time: Optional[datetime], end_time: Optional[datetime]):
    # Stored timestamps are naive civil time; compare the wall-clock reading
    st = start_time.replace(tzinfo=None) if start_time else None
    et = end_time.replace(tzinfo=None) if end_time else None
    if st and et and et < st:
        raise HTTPException(status_code=400, detail="end_time must be >= start_time")
    if st:
        stmt = stmt.where(model.timestamp >= st)
    if et:
        stmt = stmt.where(model.timestamp <= et)
    return stmt


# =====================================================
# Health Check
# =====================================================
@app.get("/health", response_model=HealthCheckResponse)
def health():
    """Health check for Postgres, Redis, and patient-service."""
    dependencies = {}
    service_name = "exchange-service"

    # Check Postgres
    start = time.time()
    try:
        conn = psycopg2.connect(
            dbname=os.environ["POSTGRES_DB"],
            user=os.environ["POSTGRES_USER"],
            password=os.environ["POSTGRES_PASSWORD"],
            host=os.environ["POSTGRES_HOST"],
            port=int(os.environ.get("POSTGRES_PORT", 5432)),
        )
        conn.close()
        dependencies["postgres-exchanges"] = Dependency(
            status="healthy", response_time_ms=int((time.time() - start) * 1000)
        )
    except (psycopg2.Error, KeyError) as e:
        logger.error("Postgres health check failed: %s", e)
        dependencies["postgres-exchanges"] = Dependency(status="unhealthy", error=str(e))

    # Check Redis
    start = time.time()
    try:
        if redis_client.ping():
            dependencies["redis"] = Dependency(
                status="healthy", response_time_ms=int((time.time() - start) * 1000)
            )
        else:
            dependencies["redis"] = Dependency(status="unhealthy", error="Ping failed")
    except RedisError as e:
        logger.error("Redis health check failed: %s", e)
        dependencies["redis"] = Dependency(status="unhealthy", error=str(e))

    # Check patient service
    start = time.time()
    try:
        with httpx.Client(timeout=2.0) as client:
            resp = client.get(f"{PATIENT_SERVICE_URL}/health")
        status = "healthy" if resp.status_code == 200 else "unhealthy"
        dependencies["patient-service"] = Dependency(
            status=status, response_time_ms=int((time.time() - start) * 1000)
        )
    except httpx.HTTPError as e:
        logger.error("Patient-service health check failed: %s", e)
        dependencies["patient-service"] = Dependency(status="unhealthy", error=str(e))

    # Aggregate status
    status = (
        "healthy" if all(dep.status == "healthy" for dep in dependencies.values()) else "unhealthy"
    )
    response = HealthCheckResponse(service=service_name, status=status, dependencies=dependencies)
    if status == "unhealthy":
        raise HTTPException(status_code=503, detail=response.model_dump())

    return response


# =====================================================
# PD Exchanges
# =====================================================
@app.post("/pd/{patient_id}", response_model=PDExchangeOut, status_code=201)
def create_pd_exchange(
    patient_id: uuid.UUID, payload: PDExchangeIn, session: Session = Depends(get_session)
):
    """
    1. Validate patient
    2. Derive UF from fill and drain, then save
    3. Publish change event
    """
    _ensure_patient_exists(patient_id)

    exchange = PDExchange(
        patient_id=patient_id,
        timestamp=payload.timestamp or civil_now(),
        baxter_strength=payload.baxter_strength,
        fill_volume=payload.fill_volume,
        drain_volume=payload.drain_volume,
        uf=ultrafiltration(payload.drain_volume, payload.fill_volume),
        weight=payload.weight,
        notes=payload.notes,
        image_url=payload.image_url,
    )
    _commit(session, exchange)

    out = PDExchangeOut.model_validate(exchange)
    _publish_change(
        patient_id, "pd_exchanges", ChangeAction.INSERT, exchange.id, out.model_dump(mode="json")
    )
    return out


@app.get("/pd/{patient_id}", response_model=List[PDExchangeOut])
def list_pd_exchanges(
    patient_id: uuid.UUID,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    order: str = "asc",
    session: Session = Depends(get_session),
):
    """
    Return a patient's PD exchanges, optionally bounded by civil time.
    order ∈ {asc, desc} by timestamp.
    """
    _ensure_patient_exists(patient_id)

    if order not in ("asc", "desc"):
        raise HTTPException(status_code=400, detail=f"Unsupported order: {order}")

    stmt = select(PDExchange).where(PDExchange.patient_id == patient_id)
    stmt = _time_window(stmt, PDExchange, start_time, end_time)
    ordering = PDExchange.timestamp.desc() if order == "desc" else PDExchange.timestamp.asc()
    return session.exec(stmt.order_by(ordering)).all()


@app.patch("/pd/exchanges/{exchange_id}", response_model=PDExchangeOut)
def update_pd_exchange(
    exchange_id: uuid.UUID, payload: PDExchangeUpdate, session: Session = Depends(get_session)
):
    """Apply a partial edit and re-derive UF before saving."""
    exchange = session.get(PDExchange, exchange_id)
    if not exchange:
        raise HTTPException(status_code=404, detail="Exchange not found")

    changes = payload.model_dump(exclude_unset=True)
    if "baxter_strength" in changes and changes["baxter_strength"] is None:
        raise HTTPException(status_code=400, detail="baxter_strength cannot be cleared")
    if "timestamp" in changes and changes["timestamp"] is None:
        raise HTTPException(status_code=400, detail="timestamp cannot be cleared")

    for key, value in changes.items():
        setattr(exchange, key, value)
    exchange.uf = ultrafiltration(exchange.drain_volume, exchange.fill_volume)
    exchange.updated_at = utc_now()
    _commit(session, exchange)

    out = PDExchangeOut.model_validate(exchange)
    changed = {k: v for k, v in out.model_dump(mode="json").items() if k in changes or k == "uf"}
    _publish_change(exchange.patient_id, "pd_exchanges", ChangeAction.UPDATE, exchange.id, changed)
    return out


@app.delete("/pd/exchanges/{exchange_id}", status_code=204)
def delete_pd_exchange(exchange_id: uuid.UUID, session: Session = Depends(get_session)):
    exchange = session.get(PDExchange, exchange_id)
    if not exchange:
        raise HTTPException(status_code=404, detail="Exchange not found")

    patient_id = exchange.patient_id
    try:
        session.delete(exchange)
        session.commit()
    except Exception as e:
        session.rollback()
        raise HTTPException(status_code=500, detail=f"Deletion failed: {e}")

    _publish_change(patient_id, "pd_exchanges", ChangeAction.DELETE, exchange_id)
    return None


# =====================================================
# HD Sessions
# =====================================================
@app.post("/hd/{patient_id}", response_model=HDExchangeOut, status_code=201)
def create_hd_exchange(
    patient_id: uuid.UUID, payload: HDExchangeIn, session: Session = Depends(get_session)
):
    _ensure_patient_exists(patient_id)

    exchange = HDExchange(
        patient_id=patient_id,
        timestamp=payload.timestamp or civil_now(),
        pre_weight=payload.pre_weight,
        post_weight=payload.post_weight,
        uf=round(hd_ultrafiltration(payload.pre_weight, payload.post_weight), 2),
        note=payload.note,
    )
    _commit(session, exchange)

    out = HDExchangeOut.model_validate(exchange)
    _publish_change(
        patient_id, "hd_exchanges", ChangeAction.INSERT, exchange.id, out.model_dump(mode="json")
    )
    return out


@app.get("/hd/{patient_id}", response_model=List[HDExchangeOut])
def list_hd_exchanges(patient_id: uuid.UUID, session: Session = Depends(get_session)):
    """Return a patient's HD sessions, newest first."""
    _ensure_patient_exists(patient_id)
    stmt = (
        select(HDExchange)
        .where(HDExchange.patient_id == patient_id)
        .order_by(HDExchange.timestamp.desc())
    )
    return session.exec(stmt).all()


@app.delete("/hd/exchanges/{exchange_id}", status_code=204)
def delete_hd_exchange(exchange_id: uuid.UUID, session: Session = Depends(get_session)):
    exchange = session.get(HDExchange, exchange_id)
    if not exchange:
        raise HTTPException(status_code=404, detail="Session not found")

    patient_id = exchange.patient_id
    try:
        session.delete(exchange)
        session.commit()
    except Exception as e:
        session.rollback()
        raise HTTPException(status_code=500, detail=f"Deletion failed: {e}")

    _publish_change(patient_id, "hd_exchanges", ChangeAction.DELETE, exchange_id)
    return None


# =====================================================
# Images (blob storage)
# =====================================================
@app.post("/images", response_model=ImageUploadOut, status_code=201)
async def upload_image(file: UploadFile = File(...)):
    """Store a drain image and return its public URL."""
    if file.content_type and not file.content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image uploads are accepted")

    data = await file.read()
    try:
        name = storage.save_image(file.filename or "image", data)
    except storage.ImageStorageError as e:
        logger.warning("Image upload rejected: %s", e)
        raise HTTPException(status_code=400, detail=str(e))
    except OSError as e:
        logger.error("Image write failed: %s", e)
        raise HTTPException(status_code=500, detail="Image storage failed")

    return ImageUploadOut(name=name, url=storage.public_url(name))


@app.get("/images/{name}")
def get_image(name: str):
    try:
        path = storage.resolve_image(name)
    except storage.ImageStorageError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Image not found")
    return FileResponse(path)
