"""Patient Service

Owns patient profiles and resolves an authenticated user to the patient
record every other service is scoped by.
"""

# =====================================================
# Standard Library Imports
# =====================================================
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

# =====================================================
# Third-Party Imports
# =====================================================
import psycopg2
import redis
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
from starlette.middleware.base import BaseHTTPMiddleware

# =====================================================
# Local Imports
# =====================================================
from careassist.civil import utc_now
from patient_service.db import get_session, init_db
from patient_service.models.models import Patient
from patient_service.models.schemas import (
    Dependency,
    HealthCheckResponse,
    PatientCreate,
    PatientResponse,
    PatientUpdate,
)

# =====================================================
# Configuration & Middleware
# =====================================================

# Logging setup
logger = logging.getLogger("patient-service")
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Structured request logging with request ID and response time."""

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


# Initialize Redis client
redis_client = redis.Redis(
    host=os.environ.get("REDIS_HOST", "localhost"),
    port=int(os.environ.get("REDIS_PORT", 6379)),
    decode_responses=True,
)


# Lifespan (startup/shutdown hooks)
@asynccontextmanager
async def lifespan(_app: FastAPI):
    try:
        init_db()
        logger.info("Database initialized successfully.")
    except (SQLAlchemyError, psycopg2.Error) as e:
        logger.error("Database initialization failed: %s", e)
    yield


# Get the ROOT_PATH environment variable defined in docker-compose
root_path = os.getenv("ROOT_PATH", "/patients")

app = FastAPI(title="Patient Service", lifespan=lifespan, root_path=root_path)
app.add_middleware(LoggingMiddleware)

# =====================================================
# Constants & Helpers
# =====================================================

CACHE_TTL_SECONDS = int(os.environ.get("PATIENT_CACHE_TTL_SECONDS", 600))


def _cache_keys(patient: Patient):
    return (f"patient:{patient.id}", f"patient:auth:{patient.auth_id}")


def _cache_patient(response_obj: PatientResponse) -> None:
    payload = response_obj.model_dump_json()
    try:
        redis_client.setex(f"patient:{response_obj.id}", CACHE_TTL_SECONDS, payload)
        redis_client.setex(f"patient:auth:{response_obj.auth_id}", CACHE_TTL_SECONDS, payload)
    except RedisError:
        # Best-effort caching; proceed even if Redis fails
        logger.debug("Redis error during patient cache warm", exc_info=True)


def _cached(cache_key: str) -> Optional[PatientResponse]:
    try:
        cached_data = redis_client.get(cache_key)
    except RedisError:
        logger.debug("Redis error during patient cache read", exc_info=True)
        return None
    if cached_data:
        return PatientResponse.model_validate_json(cached_data)
    return None


def _invalidate_patient_cache(patient: Patient) -> None:
    try:
        redis_client.delete(*_cache_keys(patient))
    except RedisError:
        logger.debug("Redis error during patient cache invalidation", exc_info=True)


def _lookup_by_auth_id(auth_id: uuid.UUID, session: Session) -> PatientResponse:
    cached = _cached(f"patient:auth:{auth_id}")
    if cached:
        return cached

    db_patient = session.exec(select(Patient).where(Patient.auth_id == auth_id)).first()
    if not db_patient:
        raise HTTPException(status_code=404, detail="No patient profile for this user")

    response_obj = PatientResponse.model_validate(db_patient)
    _cache_patient(response_obj)
    return response_obj


# =====================================================
# Health Check
# =====================================================


@app.get("/health", response_model=HealthCheckResponse)
def health():
    """
    Health check endpoint to monitor service and its dependencies.
    1. Checks Postgres connection.
    2. Checks Redis connection.
    """
    dependencies = {}
    service_name = "patient-service"

    # 1. Check Postgres (Direct connection check)
    start = time.time()
    try:
        conn = psycopg2.connect(
            dbname=os.environ.get("POSTGRES_DB"),
            user=os.environ.get("POSTGRES_USER"),
            password=os.environ.get("POSTGRES_PASSWORD"),
            host=os.environ.get("POSTGRES_HOST"),
            port=int(os.environ.get("POSTGRES_PORT", 5432)),
        )
        conn.close()
        dependencies["postgres-patient"] = Dependency(
            status="healthy", response_time_ms=int((time.time() - start) * 1000)
        )
    except psycopg2.Error as e:
        logger.error("Health check failed for Postgres: %s", e)
        dependencies["postgres-patient"] = Dependency(
            status="unhealthy", response_time_ms=None, error=str(e)
        )

    # 2. Check Redis
    start = time.time()
    try:
        if redis_client.ping():
            dependencies["redis"] = Dependency(
                status="healthy", response_time_ms=int((time.time() - start) * 1000)
            )
        else:
            dependencies["redis"] = Dependency(
                status="unhealthy", response_time_ms=None, error="Ping failed"
            )
    except RedisError as e:
        logger.error("Health check failed for Redis: %s", e)
        dependencies["redis"] = Dependency(status="unhealthy", response_time_ms=None, error=str(e))

    overall_status = (
        "healthy" if all(d.status == "healthy" for d in dependencies.values()) else "unhealthy"
    )

    response = HealthCheckResponse(
        service=service_name, status=overall_status, dependencies=dependencies
    )

    if overall_status == "unhealthy":
        raise HTTPException(status_code=503, detail=response.model_dump())

    return response


# =====================================================
# Identity Resolution
# =====================================================


@app.post("/register", response_model=PatientResponse, status_code=201)
def register_patient(payload: PatientCreate, session: Session = Depends(get_session)):
    """
    Creates the patient profile for an authenticated user.
    One profile per auth_id.
    """
    existing = session.exec(select(Patient).where(Patient.auth_id == payload.auth_id)).first()
    if existing:
        raise HTTPException(status_code=409, detail="Patient profile already exists for this user")

    db_patient = Patient(
        auth_id=payload.auth_id,
        username=payload.username.strip(),
        dialysis_type=payload.dialysis_type,
        hospital_id=payload.hospital_id,
    )
    session.add(db_patient)
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to register patient for auth_id=%s: %s", payload.auth_id, e)
        raise HTTPException(status_code=500, detail="Database error while registering patient")
    session.refresh(db_patient)
    logger.info("Registered patient %s for auth_id=%s", db_patient.id, db_patient.auth_id)

    response_obj = PatientResponse.model_validate(db_patient)
    _cache_patient(response_obj)
    return response_obj


@app.get("/me", response_model=PatientResponse)
def get_current_patient(
    x_user_id: Optional[str] = Header(None),
    session: Session = Depends(get_session),
):
    """
    Patient profile of the logged-in user, identified by the X-User-ID header
    set by the gateway after authentication.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        auth_id = uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid user identity")
    return _lookup_by_auth_id(auth_id, session)


@app.get("/resolve/{auth_id}", response_model=PatientResponse)
def resolve_patient(auth_id: uuid.UUID, session: Session = Depends(get_session)):
    """Internal use: maps an authenticated user id to its patient profile."""
    return _lookup_by_auth_id(auth_id, session)


# =====================================================
# Profile
# =====================================================


@app.get("/{patient_id}", response_model=PatientResponse)
def get_patient(patient_id: uuid.UUID, session: Session = Depends(get_session)):
    """
    Retrieves a patient profile by ID.
    """
    cached = _cached(f"patient:{patient_id}")
    if cached:
        return cached

    db_patient = session.get(Patient, patient_id)
    if not db_patient:
        raise HTTPException(status_code=404, detail="Patient not found")

    response_obj = PatientResponse.model_validate(db_patient)
    _cache_patient(response_obj)
    return response_obj


@app.patch("/{patient_id}", response_model=PatientResponse)
def update_patient(
    patient_id: uuid.UUID, payload: PatientUpdate, session: Session = Depends(get_session)
):
    """
    Updates a patient's editable fields: username, dialysis_type, hospital_id.
    """
    db_patient = session.get(Patient, patient_id)
    if not db_patient:
        raise HTTPException(status_code=404, detail="Patient not found")

    if payload.username is not None:
        db_patient.username = payload.username.strip()
    if payload.dialysis_type is not None:
        db_patient.dialysis_type = payload.dialysis_type
    if payload.hospital_id is not None:
        db_patient.hospital_id = payload.hospital_id

    # Touch updated_at
    db_patient.updated_at = utc_now()

    session.add(db_patient)
    session.commit()
    session.refresh(db_patient)

    _invalidate_patient_cache(db_patient)
    return PatientResponse.model_validate(db_patient)
