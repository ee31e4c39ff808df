import asyncio
import json
import uuid
from datetime import datetime

import httpx
import pytest

import exchange_service.main as exchange_main
from careassist.context import resolve_context
from careassist.errors import (
    BlobUploadError,
    MutationError,
    NotAuthenticatedError,
    PatientNotFoundError,
    StoreError,
)
from careassist.forms import PDExchangeForm, submit_pd_exchange
from careassist.loading import LoadPhase
from careassist.records import DialysisType
from careassist.stores import HttpBlobStore, HttpIdentityResolver, HttpRecordStore
from careassist.views import HistoryView


def _run_with(handler, action):
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await action(client)

    return asyncio.run(scenario())


def test_list_pd_sends_window_and_order():
    seen = {}

    def handler(request):
        seen.update(request.url.params)
        seen["path"] = request.url.path
        return httpx.Response(200, json=[{"id": str(uuid.uuid4()), "uf": "12", "timestamp": "2024-05-01T08:00:00"}])

    pid = uuid.uuid4()
    rows = _run_with(
        handler,
        lambda c: HttpRecordStore(c, "http://x").list_pd(
            pid, start_time=datetime(2024, 5, 1), descending=True
        ),
    )
    assert seen["path"] == f"/pd/{pid}"
    assert seen["order"] == "desc"
    assert seen["start_time"] == "2024-05-01T00:00:00"
    assert "end_time" not in seen
    assert rows[0].uf == 12.0


def test_fetch_errors_become_store_errors():
    def down(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(StoreError):
        _run_with(down, lambda c: HttpRecordStore(c, "http://x").list_pd(uuid.uuid4()))

    with pytest.raises(StoreError, match="500"):
        _run_with(
            lambda r: httpx.Response(500, json={"detail": "boom"}),
            lambda c: HttpRecordStore(c, "http://x").list_hd(uuid.uuid4()),
        )


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json=[{"id": "not-a-uuid"}]),
        httpx.Response(200, text="<html>gateway</html>"),
        httpx.Response(200, json={"rows": []}),
    ],
)
def test_unreadable_rows_become_store_errors(response):
    with pytest.raises(StoreError):
        _run_with(lambda r: response, lambda c: HttpRecordStore(c, "http://x").list_pd(uuid.uuid4()))


def test_history_refresh_fails_on_malformed_rows(ctx):
    async def refresh(client):
        view = HistoryView(ctx, HttpRecordStore(client, "http://x"))
        return await view.refresh()

    state = _run_with(lambda r: httpx.Response(200, json=[{"id": "not-a-uuid"}]), refresh)
    assert state.phase is LoadPhase.FAILED
    assert isinstance(state.error, StoreError)


def test_unreadable_mutation_response_is_a_mutation_error():
    with pytest.raises(MutationError, match="Malformed PDExchange"):
        _run_with(
            lambda r: httpx.Response(201, text="created"),
            lambda c: HttpRecordStore(c, "http://x").insert_pd(uuid.uuid4(), {"fill_volume": 1}),
        )


def test_mutation_errors_become_mutation_errors():
    with pytest.raises(MutationError, match="Exchange not found"):
        _run_with(
            lambda r: httpx.Response(404, json={"detail": "Exchange not found"}),
            lambda c: HttpRecordStore(c, "http://x").update_pd(uuid.uuid4(), {"notes": "x"}),
        )


def test_identity_resolver():
    user_id = uuid.uuid4()
    patient = {
        "id": str(uuid.uuid4()),
        "auth_id": str(user_id),
        "username": "Asha Rao",
        "dialysis_type": "HD",
    }

    def handler(request):
        if request.url.path == f"/resolve/{user_id}":
            return httpx.Response(200, json=patient)
        return httpx.Response(404, json={"detail": "No patient profile for this user"})

    ctx = _run_with(handler, lambda c: resolve_context(HttpIdentityResolver(c, user_id, "http://p")))
    assert str(ctx.patient_id) == patient["id"]
    assert ctx.dialysis_type is DialysisType.HD
    assert ctx.first_name == "Asha"
    assert ctx.log_action_label == "Log HD"

    with pytest.raises(PatientNotFoundError):
        _run_with(handler, lambda c: HttpIdentityResolver(c, None, "http://p").resolve_patient(uuid.uuid4()))

    with pytest.raises(NotAuthenticatedError):
        _run_with(handler, lambda c: resolve_context(HttpIdentityResolver(c, None, "http://p")))


def test_blob_store_upload():
    def handler(request):
        assert b'filename="a.png"' in request.content
        return httpx.Response(201, json={"name": "1-a.png", "url": "/exchanges/images/1-a.png"})

    url = _run_with(handler, lambda c: HttpBlobStore(c, "http://x").upload("a.png", b"img", "image/png"))
    assert url == "/exchanges/images/1-a.png"

    with pytest.raises(BlobUploadError):
        _run_with(
            lambda r: httpx.Response(400, json={"detail": "Only image uploads are accepted"}),
            lambda c: HttpBlobStore(c, "http://x").upload("a.txt", b"x", "text/plain"),
        )


def test_submitted_exchange_reads_back_with_store_uf(exchange_client, fake_redis, ctx):
    """Insert through the client, fetch back through the service: uf comes from the store."""
    form = PDExchangeForm(
        timestamp="2024-05-01T23:59",
        leftover_volume="200",
        drain_volume="2000",
    )

    async def scenario():
        transport = httpx.ASGITransport(app=exchange_main.app)
        async with httpx.AsyncClient(transport=transport) as client:
            store = HttpRecordStore(client, "http://exchange")
            inserted = await submit_pd_exchange(ctx, form, store)
            rows = await store.list_pd(
                ctx.patient_id,
                start_time=datetime(2024, 5, 1, 0, 0),
                end_time=datetime(2024, 5, 1, 23, 59, 59, 999999),
            )
            return inserted, rows

    inserted, rows = asyncio.run(scenario())

    assert inserted.uf == 200
    assert [r.id for r in rows] == [inserted.id]
    assert rows[0].uf == 200
    assert rows[0].fill_volume == 1800
    assert rows[0].timestamp == datetime(2024, 5, 1, 23, 59)

    channel, message = fake_redis.published[0]
    assert json.loads(message)["action"] == "insert"
