from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.dependencies import get_sos_event_service, get_sos_trigger_service
from app.models.domain.profile_domain import ContactType
from app.models.domain.sos_domain import SOSStatus
from app.routes import sos
from app.services.background_tasks import BackgroundTaskRunner
from app.services.email_queue_processor import EmailQueueProcessor
from app.services.sos.call_sequencer import EmergencyCallSequencer
from app.services.sos.email_notifier import EmergencyEmailNotifier
from app.services.sos.event_service import SOSEventService
from app.services.sos.family_notifier import FamilyRealtimeNotifier
from app.services.sos.orchestrator import SOSTriggerService
from tests.fakes import (
    USER_ID,
    FakeEmailProvider,
    FakeEmailQueueRepository,
    FakeProfileRepository,
    FakeRedis,
    FakeSOSRepository,
    ScriptedDialer,
    make_contact,
    make_member,
)

TRIGGER_BODY = {
    "location": {"lat": 37.7749, "lng": -122.4194, "accuracy": 10, "address": "1 Market St"},
    "user_profile": {"first_name": "Ada", "last_name": "Lovelace"},
}


def _build(apply_auth_override):
    profiles = FakeProfileRepository()
    events = FakeSOSRepository()
    email_provider = FakeEmailProvider()
    notifier = FamilyRealtimeNotifier(FakeRedis(), events)
    trigger_service = SOSTriggerService(
        profiles=profiles,
        events=events,
        family_notifier=notifier,
        call_sequencer=EmergencyCallSequencer(ScriptedDialer(), events, interval_seconds=0),
        email_notifier=EmergencyEmailNotifier(EmailQueueProcessor(FakeEmailQueueRepository(), email_provider)),
        task_runner=BackgroundTaskRunner(),
    )
    event_service = SOSEventService(profiles=profiles, events=events, family_notifier=notifier)

    app = FastAPI()
    app.include_router(sos.router)
    apply_auth_override(app)
    app.dependency_overrides[get_sos_trigger_service] = lambda: trigger_service
    app.dependency_overrides[get_sos_event_service] = lambda: event_service
    return TestClient(app), profiles, events, email_provider


def test_trigger_returns_attempted_counts(apply_auth_override):
    client, profiles, events, email_provider = _build(apply_auth_override)
    profiles.groups[USER_ID] = "group-1"
    profiles.members["group-1"] = [make_member("fam-1")]
    profiles.contacts[USER_ID] = [make_contact("c1", email="c1@example.com")]

    response = client.post("/sos/trigger", json=TRIGGER_BODY)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["event_id"] in events.events
    assert data["family_alerts_sent"] == 1
    assert data["real_time_enabled"] is True
    assert data["email_notifications"] == 1
    assert data["call_only_contacts"] == 0
    assert email_provider.sent[0]["to"] == "c1@example.com"


def test_trigger_without_contacts_or_family(apply_auth_override):
    client, _, events, _ = _build(apply_auth_override)

    response = client.post("/sos/trigger", json=TRIGGER_BODY)

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "event_id": next(iter(events.events)),
        "family_alerts_sent": 0,
        "call_only_contacts": 0,
        "email_notifications": 0,
        "real_time_enabled": False,
    }


def test_trigger_counts_call_only_contacts(apply_auth_override):
    client, profiles, _, _ = _build(apply_auth_override)
    profiles.contacts[USER_ID] = [make_contact("c1", contact_type=ContactType.CALL_ONLY)]

    response = client.post("/sos/trigger", json=TRIGGER_BODY)

    assert response.json()["call_only_contacts"] == 1


def test_trigger_event_insert_failure_is_500(apply_auth_override):
    client, _, events, _ = _build(apply_auth_override)
    events.fail_create = True

    response = client.post("/sos/trigger", json=TRIGGER_BODY)

    assert response.status_code == 500
    assert response.json()["success"] is False
    assert "Failed to create SOS event" in response.json()["error"]


def test_trigger_rejects_invalid_location(apply_auth_override):
    client, _, events, _ = _build(apply_auth_override)
    body = {**TRIGGER_BODY, "location": {"lat": 123, "lng": 0}}

    response = client.post("/sos/trigger", json=body)

    assert response.status_code == 422
    assert events.events == {}


def test_trigger_requires_auth():
    app = FastAPI()
    app.include_router(sos.router)
    client = TestClient(app)

    response = client.post("/sos/trigger", json=TRIGGER_BODY)

    assert response.status_code == 401


def test_acknowledge_and_resolve_flow(apply_auth_override, auth_override):
    client, profiles, events, _ = _build(apply_auth_override)
    events.add_event("event-1", user_id="someone-else", group_id="group-1")
    profiles.members["group-1"] = [make_member(USER_ID)]

    response = client.post("/sos/events/event-1/acknowledge", json={"message": "Coming now"})
    assert response.status_code == 200
    assert response.json()["acknowledgement"]["message"] == "Coming now"
    assert response.json()["call_sequence_paused"] is True

    repeat = client.post("/sos/events/event-1/acknowledge")
    assert repeat.status_code == 200
    assert repeat.json()["already_acknowledged"] is True

    detail = client.get("/sos/events/event-1")
    assert detail.status_code == 200
    assert len(detail.json()["acknowledgements"]) == 1

    # Only the person who raised it may resolve it
    forbidden = client.post("/sos/events/event-1/resolve")
    assert forbidden.status_code == 403


def test_acknowledge_unknown_event_is_404(apply_auth_override):
    client, _, _, _ = _build(apply_auth_override)

    response = client.post("/sos/events/missing/acknowledge")

    assert response.status_code == 404


def test_owner_resolves(apply_auth_override):
    client, _, events, _ = _build(apply_auth_override)
    events.add_event("event-1", user_id=USER_ID)

    response = client.post("/sos/events/event-1/resolve")

    assert response.status_code == 200
    assert response.json() == {"success": True, "event_id": "event-1", "status": "resolved"}


def test_group_owner_acknowledges_and_views_member_sos(apply_auth_override):
    client, profiles, events, _ = _build(apply_auth_override)
    events.add_event("event-1", user_id="fam-1", group_id="group-1")
    profiles.owners["group-1"] = make_member(USER_ID)
    profiles.members["group-1"] = [make_member("fam-1")]

    response = client.post("/sos/events/event-1/acknowledge")
    assert response.status_code == 200

    detail = client.get("/sos/events/event-1")
    assert detail.status_code == 200
    assert detail.json()["event"]["status"] == "acknowledged"
    assert [a["family_user_id"] for a in detail.json()["acknowledgements"]] == [USER_ID]


def test_acknowledging_resolved_sos_is_409(apply_auth_override):
    client, profiles, events, _ = _build(apply_auth_override)
    events.add_event("event-1", user_id="someone-else", group_id="group-1", status=SOSStatus.RESOLVED)
    profiles.members["group-1"] = [make_member(USER_ID)]

    response = client.post("/sos/events/event-1/acknowledge")

    assert response.status_code == 409
