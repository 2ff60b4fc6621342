from types import SimpleNamespace

import pytest

from app.db.helpers import DatabaseError
from app.models.domain.profile_domain import ContactType
from app.services.providers.twilio_dialer import DialerError, DialerUnavailableError, DialOutcome, TwilioDialer
from app.services.sos.call_sequencer import (
    CallSequenceState,
    EmergencyCallSequencer,
    select_call_contacts,
)
from tests.fakes import FakeCalls, ScriptedDialer, make_contact


def _call_only(contact_id, priority):
    return make_contact(contact_id, priority=priority, contact_type=ContactType.CALL_ONLY)


def test_select_call_contacts_filters_and_orders():
    contacts = [
        _call_only("c3", 3),
        make_contact("e1", priority=1, contact_type=ContactType.EMAIL_ONLY),
        _call_only("c1", 1),
        make_contact("b1", priority=1, contact_type=ContactType.BOTH),
        _call_only("c2a", 2),
        _call_only("c2b", 2),
    ]

    selected = select_call_contacts(contacts)

    assert [c.id for c in selected] == ["c1", "c2a", "c2b", "c3"]


@pytest.mark.asyncio
async def test_first_timeout_second_answers(sos_repo, user_profile, location):
    sos_repo.add_event("event-1")
    dialer = ScriptedDialer({"c1": DialOutcome.TIMEOUT, "c2": DialOutcome.REACHED})
    sequencer = EmergencyCallSequencer(dialer, sos_repo, interval_seconds=15)

    result = await sequencer.run("event-1", [_call_only("c1", 1), _call_only("c2", 2)], user_profile, location)

    assert result.state == CallSequenceState.REACHED
    assert result.dialed == ["c1", "c2"]
    assert result.reached_contact_id == "c2"
    assert [c["attempt_order"] for c in dialer.calls] == [1, 2]
    assert all(c["timeout"] == 15 for c in dialer.calls)
    assert dialer.calls[0]["user_name"] == "Ada Lovelace"


@pytest.mark.asyncio
async def test_stops_at_first_answer(sos_repo, user_profile, location):
    sos_repo.add_event("event-1")
    dialer = ScriptedDialer({"c1": DialOutcome.REACHED})
    sequencer = EmergencyCallSequencer(dialer, sos_repo)

    result = await sequencer.run("event-1", [_call_only("c1", 1), _call_only("c2", 2)], user_profile, location)

    assert result.state == CallSequenceState.REACHED
    assert result.dialed == ["c1"]


@pytest.mark.asyncio
async def test_nobody_answers_exhausts(sos_repo, user_profile, location):
    sos_repo.add_event("event-1")
    sequencer = EmergencyCallSequencer(ScriptedDialer(), sos_repo)

    result = await sequencer.run("event-1", [_call_only("c1", 1), _call_only("c2", 2)], user_profile, location)

    assert result.state == CallSequenceState.EXHAUSTED
    assert result.dialed == ["c1", "c2"]
    assert result.reached_contact_id is None


@pytest.mark.asyncio
async def test_no_call_contacts_places_no_calls(sos_repo, user_profile, location):
    dialer = ScriptedDialer()
    sequencer = EmergencyCallSequencer(dialer, sos_repo)

    result = await sequencer.run("event-1", [make_contact("b1")], user_profile, location)

    assert result.state == CallSequenceState.EXHAUSTED
    assert dialer.calls == []


@pytest.mark.asyncio
async def test_per_contact_error_moves_on(sos_repo, user_profile, location):
    sos_repo.add_event("event-1")
    dialer = ScriptedDialer({"c1": DialerError("invalid number", status_code=400), "c2": DialOutcome.REACHED})
    sequencer = EmergencyCallSequencer(dialer, sos_repo)

    result = await sequencer.run("event-1", [_call_only("c1", 1), _call_only("c2", 2)], user_profile, location)

    assert result.state == CallSequenceState.REACHED
    assert result.failed == ["c1"]
    assert result.dialed == ["c1", "c2"]


@pytest.mark.asyncio
async def test_provider_unavailable_abandons(sos_repo, user_profile, location):
    sos_repo.add_event("event-1")
    dialer = ScriptedDialer({"c1": DialerUnavailableError("Twilio unreachable")})
    sequencer = EmergencyCallSequencer(dialer, sos_repo)

    result = await sequencer.run("event-1", [_call_only("c1", 1), _call_only("c2", 2)], user_profile, location)

    assert result.state == CallSequenceState.ABANDONED
    assert result.dialed == ["c1"]
    assert len(dialer.calls) == 1


@pytest.mark.asyncio
async def test_acknowledgement_halts_before_next_dial(sos_repo, user_profile, location):
    sos_repo.add_event("event-1")

    async def family_member_acknowledges(contact):
        await sos_repo.mark_acknowledged("event-1", "family-1")

    dialer = ScriptedDialer(on_dial=family_member_acknowledges)
    sequencer = EmergencyCallSequencer(dialer, sos_repo)

    result = await sequencer.run("event-1", [_call_only("c1", 1), _call_only("c2", 2)], user_profile, location)

    assert result.state == CallSequenceState.HALTED
    assert result.dialed == ["c1"]


@pytest.mark.asyncio
async def test_status_check_failure_keeps_dialing(sos_repo, user_profile, location):
    async def broken_get_event(event_id):
        raise DatabaseError("connection lost", operation="get_event")

    sos_repo.get_event = broken_get_event
    dialer = ScriptedDialer({"c2": DialOutcome.REACHED})
    sequencer = EmergencyCallSequencer(dialer, sos_repo)

    result = await sequencer.run("event-1", [_call_only("c1", 1), _call_only("c2", 2)], user_profile, location)

    assert result.state == CallSequenceState.REACHED
    assert result.dialed == ["c1", "c2"]


@pytest.mark.asyncio
async def test_answer_poll_failures_keep_the_sequence_going(sos_repo, user_profile, location):
    sos_repo.add_event("event-1")

    async def poll_unavailable(attempt_id):
        raise DatabaseError("connection lost", operation="fetch_one")

    sos_repo.is_call_answered = poll_unavailable
    calls = FakeCalls("CA-first", "CA-second")
    dialer = TwilioDialer(
        account_sid="AC123",
        auth_token="token",
        from_number="+15550001111",
        status_callback_url="https://api.example.com/webhooks/twilio/call-status",
        repository=sos_repo,
        poll_interval=0.01,
        client=SimpleNamespace(calls=calls),
    )
    sequencer = EmergencyCallSequencer(dialer, sos_repo, interval_seconds=0.02)

    result = await sequencer.run("event-1", [_call_only("c1", 1), _call_only("c2", 2)], user_profile, location)

    assert result.state == CallSequenceState.EXHAUSTED
    assert result.dialed == ["c1", "c2"]
    assert [r["to"] for r in calls.requests] == ["+15555550100", "+15555550100"]


@pytest.mark.asyncio
async def test_database_error_from_dialer_is_per_contact(sos_repo, user_profile, location):
    sos_repo.add_event("event-1")
    dialer = ScriptedDialer(
        {"c1": DatabaseError("insert failed", operation="record_call_attempt"), "c2": DialOutcome.REACHED}
    )
    sequencer = EmergencyCallSequencer(dialer, sos_repo, interval_seconds=0)

    result = await sequencer.run("event-1", [_call_only("c1", 1), _call_only("c2", 2)], user_profile, location)

    assert result.state == CallSequenceState.REACHED
    assert result.failed == ["c1"]
