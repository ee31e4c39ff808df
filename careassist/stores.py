"""Collaborator contracts and their HTTP implementations.

The ledger never talks to a transport directly; views and forms receive a
:class:`RecordStore`, :class:`IdentityResolver` and :class:`BlobStore`. The
``Http*`` classes implement them against the Care-Assist services with a
shared ``httpx.AsyncClient``.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import ValidationError

from careassist.config import EXCHANGE_SERVICE_URL, HTTP_TIMEOUT_SECONDS, PATIENT_SERVICE_URL
from careassist.errors import (
    BlobUploadError,
    MutationError,
    PatientNotFoundError,
    StoreError,
)
from careassist.records import HDExchange, PatientProfile, PDExchange

logger = logging.getLogger(__name__)


# =====================================================
# Contracts
# =====================================================
class RecordStore(Protocol):
    async def list_pd(
        self,
        patient_id: uuid.UUID,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        descending: bool = False,
    ) -> List[PDExchange]: ...

    async def insert_pd(self, patient_id: uuid.UUID, fields: Dict[str, Any]) -> PDExchange: ...

    async def update_pd(self, exchange_id: uuid.UUID, fields: Dict[str, Any]) -> PDExchange: ...

    async def delete_pd(self, exchange_id: uuid.UUID) -> None: ...

    async def list_hd(self, patient_id: uuid.UUID) -> List[HDExchange]: ...

    async def insert_hd(self, patient_id: uuid.UUID, fields: Dict[str, Any]) -> HDExchange: ...

    async def delete_hd(self, exchange_id: uuid.UUID) -> None: ...


class IdentityResolver(Protocol):
    def current_user(self) -> Optional[uuid.UUID]: ...

    async def resolve_patient(self, user_id: uuid.UUID) -> PatientProfile: ...


class BlobStore(Protocol):
    async def upload(self, filename: str, content: bytes, content_type: str) -> str: ...


def _detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)


def _time_params(start_time: Optional[datetime], end_time: Optional[datetime]) -> Dict[str, str]:
    params = {}
    if start_time is not None:
        params["start_time"] = start_time.isoformat()
    if end_time is not None:
        params["end_time"] = end_time.isoformat()
    return params


# =====================================================
# Record store (exchange-service)
# =====================================================
class HttpRecordStore:
    def __init__(self, client: httpx.AsyncClient, base_url: str = EXCHANGE_SERVICE_URL):
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def _fetch(self, path: str, params: Dict[str, str]) -> list:
        try:
            resp = await self._client.get(
                f"{self._base_url}{path}", params=params, timeout=HTTP_TIMEOUT_SECONDS
            )
        except httpx.HTTPError as e:
            raise StoreError(f"Exchange service unavailable: {e}") from e
        if resp.status_code != 200:
            raise StoreError(f"Fetch failed ({resp.status_code}): {_detail(resp)}")
        try:
            rows = resp.json() or []
        except ValueError as e:
            raise StoreError(f"Unreadable response from {path}: {e}") from e
        if not isinstance(rows, list):
            raise StoreError(f"Expected a list from {path}, got {type(rows).__name__}")
        return rows

    @staticmethod
    def _parse_rows(model, rows: list) -> list:
        try:
            return [model.model_validate(row) for row in rows]
        except ValidationError as e:
            raise StoreError(f"Malformed {model.__name__} row: {e}") from e

    @staticmethod
    def _stored(model, resp: httpx.Response):
        """The row the store confirmed; unreadable bodies count as a failed mutation."""
        try:
            return model.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise MutationError(f"Malformed {model.__name__} response: {e}") from e

    async def _mutate(self, method: str, path: str, json: Optional[dict] = None) -> httpx.Response:
        try:
            resp = await self._client.request(
                method, f"{self._base_url}{path}", json=json, timeout=HTTP_TIMEOUT_SECONDS
            )
        except httpx.HTTPError as e:
            raise MutationError(f"Exchange service unavailable: {e}") from e
        if resp.status_code >= 400:
            raise MutationError(f"{method} {path} failed ({resp.status_code}): {_detail(resp)}")
        return resp

    async def list_pd(self, patient_id, start_time=None, end_time=None, descending=False):
        params = _time_params(start_time, end_time)
        params["order"] = "desc" if descending else "asc"
        rows = await self._fetch(f"/pd/{patient_id}", params)
        return self._parse_rows(PDExchange, rows)

    async def insert_pd(self, patient_id, fields):
        resp = await self._mutate("POST", f"/pd/{patient_id}", json=fields)
        return self._stored(PDExchange, resp)

    async def update_pd(self, exchange_id, fields):
        resp = await self._mutate("PATCH", f"/pd/exchanges/{exchange_id}", json=fields)
        return self._stored(PDExchange, resp)

    async def delete_pd(self, exchange_id):
        await self._mutate("DELETE", f"/pd/exchanges/{exchange_id}")

    async def list_hd(self, patient_id):
        rows = await self._fetch(f"/hd/{patient_id}", {})
        return self._parse_rows(HDExchange, rows)

    async def insert_hd(self, patient_id, fields):
        resp = await self._mutate("POST", f"/hd/{patient_id}", json=fields)
        return self._stored(HDExchange, resp)

    async def delete_hd(self, exchange_id):
        await self._mutate("DELETE", f"/hd/exchanges/{exchange_id}")


# =====================================================
# Identity (patient-service)
# =====================================================
class HttpIdentityResolver:
    """Resolves patients for an already-authenticated user.

    The authenticated user id comes from whoever built the client (a verified
    token, a test) and is passed in explicitly.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        user_id: Optional[uuid.UUID] = None,
        base_url: str = PATIENT_SERVICE_URL,
    ):
        self._client = client
        self._user_id = user_id
        self._base_url = base_url.rstrip("/")

    def current_user(self) -> Optional[uuid.UUID]:
        return self._user_id

    async def resolve_patient(self, user_id: uuid.UUID) -> PatientProfile:
        try:
            resp = await self._client.get(
                f"{self._base_url}/resolve/{user_id}", timeout=HTTP_TIMEOUT_SECONDS
            )
        except httpx.HTTPError as e:
            raise StoreError(f"Patient service unavailable: {e}") from e
        if resp.status_code == 404:
            raise PatientNotFoundError(f"No patient profile for user {user_id}")
        if resp.status_code != 200:
            raise StoreError(f"Patient lookup failed ({resp.status_code}): {_detail(resp)}")
        try:
            return PatientProfile.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise StoreError(f"Malformed patient profile: {e}") from e

    async def resolve_patient_id(self, user_id: uuid.UUID) -> uuid.UUID:
        return (await self.resolve_patient(user_id)).id


# =====================================================
# Blob storage (exchange-service /images)
# =====================================================
class HttpBlobStore:
    def __init__(self, client: httpx.AsyncClient, base_url: str = EXCHANGE_SERVICE_URL):
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def upload(self, filename: str, content: bytes, content_type: str) -> str:
        try:
            resp = await self._client.post(
                f"{self._base_url}/images",
                files={"file": (filename, content, content_type)},
                timeout=HTTP_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            raise BlobUploadError(f"Image upload failed: {e}") from e
        if resp.status_code not in (200, 201):
            raise BlobUploadError(f"Image upload rejected ({resp.status_code}): {_detail(resp)}")
        try:
            body = resp.json()
        except ValueError as e:
            raise BlobUploadError(f"Unreadable upload response: {e}") from e
        url = body.get("url") if isinstance(body, dict) else None
        if not url:
            raise BlobUploadError("Image upload returned no URL")
        logger.info("Uploaded image %s", url)
        return url
