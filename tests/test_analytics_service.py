import uuid
from datetime import datetime

import httpx
import pytest
from fastapi import HTTPException

import analytics_service.main as analytics_main

NOW = datetime(2024, 5, 3, 18, 0)


@pytest.fixture
def exchanges(monkeypatch, make_pd):
    """Serve records from memory instead of the exchange service."""
    rows = []
    calls = []

    def fake_fetch(patient_id, start_time=None, end_time=None, order="asc"):
        calls.append((patient_id, start_time, end_time, order))
        selected = [r for r in rows if r.patient_id == patient_id]
        if start_time is not None:
            selected = [r for r in selected if r.timestamp >= start_time]
        if end_time is not None:
            selected = [r for r in selected if r.timestamp <= end_time]
        return sorted(selected, key=lambda r: r.timestamp, reverse=order == "desc")

    monkeypatch.setattr(analytics_main, "_fetch_pd_exchanges", fake_fetch)
    monkeypatch.setattr(analytics_main, "civil_now", lambda: NOW)
    fake_fetch.rows = rows
    fake_fetch.calls = calls
    return fake_fetch


def test_today_summary(analytics_client, exchanges, make_pd, patient_id):
    exchanges.rows.extend(
        [
            make_pd("2024-05-03T21:15:00", fill=2000, drain=1900),
            make_pd("2024-05-03T06:05:00", fill=2000, drain=2250),
            make_pd("2024-05-02T23:59:59", fill=2000, drain=3000),
        ]
    )
    data = analytics_client.get(f"/{patient_id}/today").json()

    assert data["day"] == "2024-05-03"
    assert data["total_uf"] == 150
    assert data["total_display"] == "+150 mL"
    assert data["direction"] == "retained"
    assert [e["time"] for e in data["exchanges"]] == ["06:05", "21:15"]
    assert data["exchanges"][1]["uf_display"] == "-100 mL"


def test_today_without_exchanges(analytics_client, exchanges, patient_id):
    data = analytics_client.get(f"/{patient_id}/today").json()
    assert data["total_uf"] == 0
    assert data["direction"] is None
    assert data["exchanges"] == []


def test_summary_is_cached_until_a_change_event(
    analytics_client, exchanges, make_pd, patient_id, fake_redis
):
    exchanges.rows.append(make_pd("2024-05-03T06:00:00", fill=2000, drain=2100))
    assert analytics_client.get(f"/{patient_id}/today").json()["total_uf"] == 100

    exchanges.rows.append(make_pd("2024-05-03T10:00:00", fill=2000, drain=2100))
    assert analytics_client.get(f"/{patient_id}/today").json()["total_uf"] == 100
    assert len(exchanges.calls) == 1

    analytics_main.process_change_event(
        {"patient_id": str(patient_id), "table": "pd_exchanges", "action": "insert", "id": "x"}
    )
    assert fake_redis.smembers(f"summary-keys:{patient_id}") == set()
    assert analytics_client.get(f"/{patient_id}/today").json()["total_uf"] == 200


def test_malformed_change_event_is_ignored(fake_redis, monkeypatch, patient_id):
    monkeypatch.setattr(analytics_main, "redis_client", fake_redis)
    fake_redis.sadd(f"summary-keys:{patient_id}", "summary:k")
    analytics_main.process_change_event({"table": "pd_exchanges"})
    assert fake_redis.smembers(f"summary-keys:{patient_id}") == {"summary:k"}


def test_average(analytics_client, exchanges, make_pd, patient_id):
    exchanges.rows.extend(
        [
            make_pd("2024-05-03T06:00:00", fill=2000, drain=2100),
            make_pd("2024-04-26T00:00:00", fill=2000, drain=1700),
            make_pd("2024-04-25T23:00:00", fill=2000, drain=9000),
        ]
    )
    data = analytics_client.get(f"/{patient_id}/average").json()
    assert data == {
        "patient_id": str(patient_id),
        "window_days": 7,
        "average_uf": -100.0,
        "average_display": "-100 mL",
        "count": 2,
    }
    assert analytics_client.get(f"/{patient_id}/average", params={"days": 0}).status_code == 422


def test_trend(analytics_client, exchanges, make_pd, patient_id):
    empty = analytics_client.get(f"/{patient_id}/trend").json()
    assert empty["state"] == "empty"
    assert empty["points"] == []

    exchanges.rows.extend(
        [
            make_pd("2024-04-10T08:00:00", fill=2000, drain=2300),
            make_pd("2024-05-02T08:00:00", fill=2000, drain=1950),
        ]
    )
    analytics_main.invalidate_patient_summaries(patient_id, {})

    data = analytics_client.get(f"/{patient_id}/trend", params={"window": "30days"}).json()
    assert data["state"] == "loaded"
    assert data["points"] == [{"label": "10 Apr", "value": 300}, {"label": "2 May", "value": -50}]
    assert data["retention"] is True

    seven = analytics_client.get(f"/{patient_id}/trend", params={"window": "7days"}).json()
    assert seven["points"] == [{"label": "2 May", "value": -50}]
    assert seven["retention"] is False

    assert analytics_client.get(f"/{patient_id}/trend", params={"window": "1year"}).status_code == 422


def test_history_filters_and_groups(analytics_client, exchanges, make_pd, patient_id):
    exchanges.rows.extend(
        [
            make_pd("2024-05-01T08:00:00", fill=2000, drain=1900, weight=60.0),
            make_pd("2024-05-02T08:00:00", fill=2000, drain=2100, weight=62.0),
            make_pd("2024-05-02T20:00:00", fill=2000, drain=2050, weight=64.0),
        ]
    )
    data = analytics_client.get(f"/{patient_id}/history").json()
    assert data["summary"] == "Showing 3 of 3 sessions"
    assert [g["date"] for g in data["groups"]] == ["2024-05-02", "2024-05-01"]
    assert data["groups"][0]["total_uf"] == 150
    assert [e["time_12h"] for e in data["groups"][0]["exchanges"]] == ["8:00 PM", "8:00 AM"]

    filtered = analytics_client.get(
        f"/{patient_id}/history", params={"uf_min": "0", "weight_category": "above"}
    ).json()
    assert filtered["visible"] == 1
    assert filtered["total"] == 3
    assert filtered["groups"][0]["exchanges"][0]["weight"] == 64.0

    assert analytics_client.get(f"/{patient_id}/history", params={"uf_min": "x"}).status_code == 400


_REAL_CLIENT = httpx.Client


def _client_factory(handler):
    def factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return _REAL_CLIENT(*args, **kwargs)

    return factory


def test_fetch_maps_exchange_service_errors(monkeypatch):
    pid = uuid.uuid4()

    monkeypatch.setattr(
        analytics_main.httpx, "Client", _client_factory(lambda r: httpx.Response(404))
    )
    with pytest.raises(HTTPException) as missing:
        analytics_main._fetch_pd_exchanges(pid)
    assert missing.value.status_code == 404

    def down(request):
        raise httpx.ConnectError("refused", request=request)

    monkeypatch.setattr(analytics_main.httpx, "Client", _client_factory(down))
    with pytest.raises(HTTPException) as unavailable:
        analytics_main._fetch_pd_exchanges(pid)
    assert unavailable.value.status_code == 502


def test_fetch_parses_rows(monkeypatch):
    pid = uuid.uuid4()
    seen = {}

    def handler(request):
        seen.update(request.url.params)
        row = {"id": str(uuid.uuid4()), "timestamp": "2024-05-01T08:00:00", "uf": 25}
        return httpx.Response(200, json=[row])

    monkeypatch.setattr(analytics_main.httpx, "Client", _client_factory(handler))
    rows = analytics_main._fetch_pd_exchanges(pid, start_time=datetime(2024, 5, 1), order="desc")
    assert rows[0].uf == 25
    assert seen == {"order": "desc", "start_time": "2024-05-01T00:00:00"}
