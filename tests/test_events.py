import uuid

import pytest

from careassist.events import ChangeAction, RecordChange, RecordChangeHub


def _change(action=ChangeAction.UPDATE, **fields):
    return RecordChange(
        patient_id=uuid.uuid4(),
        table="pd_exchanges",
        action=action,
        record_id=str(uuid.uuid4()),
        fields=fields,
    )


def test_event_round_trip_keeps_fields():
    change = _change(uf=-50.0)
    assert RecordChange.from_event(change.to_event()) == change


def test_changed_fields_carry_id_table_and_action():
    change = _change(uf=120.0)
    changed = change.changed_fields()
    assert changed == {
        "uf": 120.0,
        "id": change.record_id,
        "table": "pd_exchanges",
        "action": "update",
    }


def test_delete_is_flagged():
    assert _change(ChangeAction.DELETE).changed_fields()["deleted"] is True


@pytest.mark.parametrize(
    "data",
    [{}, {"patient_id": "nope", "table": "pd_exchanges", "action": "insert"},
     {"patient_id": str(uuid.uuid4()), "table": "pd_exchanges", "action": "upsert"}],
)
def test_from_event_rejects_junk(data):
    with pytest.raises((KeyError, ValueError)):
        RecordChange.from_event(data)


def test_hub_notifies_subscribers_until_unsubscribed():
    hub = RecordChangeHub()
    seen = []
    unsubscribe = hub.subscribe(lambda pid, changed: seen.append((pid, changed["id"])))

    change = _change()
    hub.publish(change)
    unsubscribe()
    hub.publish(_change())

    assert seen == [(change.patient_id, change.record_id)]


def test_failing_subscriber_does_not_block_others():
    hub = RecordChangeHub()
    seen = []

    def broken(pid, changed):
        raise RuntimeError("boom")

    hub.subscribe(broken)
    hub.subscribe(lambda pid, changed: seen.append(pid))

    change = _change()
    hub.publish(change)
    assert seen == [change.patient_id]


def test_subscribers_get_independent_copies():
    hub = RecordChangeHub()
    copies = []

    def mutate(pid, changed):
        changed["uf"] = "tampered"
        copies.append(changed)

    hub.subscribe(mutate)
    hub.subscribe(lambda pid, changed: copies.append(changed))
    hub.publish(_change(uf=1.0))
    assert copies[1]["uf"] == 1.0
