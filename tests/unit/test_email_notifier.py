import pytest

from app.models.domain.email_queue_domain import URGENT_PRIORITY, EmailQueueStatus
from app.models.domain.profile_domain import ContactType
from app.services.email_queue_processor import EmailQueueProcessor
from app.services.sos.email_notifier import EmergencyEmailNotifier
from tests.fakes import make_contact


@pytest.fixture
def notifier(email_repo, email_provider):
    return EmergencyEmailNotifier(EmailQueueProcessor(email_repo, email_provider), sender="ICE SOS <noreply@icesos.app>")


@pytest.mark.asyncio
async def test_every_contact_with_an_address_is_emailed(notifier, email_repo, email_provider, location, user_profile):
    contacts = [
        make_contact("c1", contact_type=ContactType.CALL_ONLY, email="c1@example.com"),
        make_contact("c2", contact_type=ContactType.EMAIL_ONLY, phone=None, email="c2@example.com"),
        make_contact("c3", email=None),
    ]

    result = await notifier.notify("event-1", contacts, user_profile, location)

    assert result == {
        "emails_attempted": 2,
        "emails_sent": 2,
        "emails_failed": 0,
        "emails_deferred": 0,
        "skipped_no_email": 1,
    }
    sent = email_provider.sent
    assert sorted(m["to"] for m in sent) == ["c1@example.com", "c2@example.com"]
    assert sent[0]["subject"] == "🚨 EMERGENCY ALERT - Ada Lovelace needs help"
    assert location.maps_link() in sent[0]["html"]
    assert sent[0]["sender"] == "ICE SOS <noreply@icesos.app>"

    rows = list(email_repo.rows.values())
    assert all(r.priority == URGENT_PRIORITY and r.event_id == "event-1" for r in rows)


@pytest.mark.asyncio
async def test_failed_send_leaves_failed_row(notifier, email_repo, email_provider, location, user_profile):
    email_provider.fail_for.add("bad@example.com")
    contacts = [make_contact("c1", email="bad@example.com"), make_contact("c2", email="good@example.com")]

    result = await notifier.notify("event-1", contacts, user_profile, location)

    assert result["emails_sent"] == 1
    assert result["emails_failed"] == 1
    statuses = {r.recipient_email: r.status for r in email_repo.rows.values()}
    assert statuses == {"bad@example.com": EmailQueueStatus.FAILED, "good@example.com": EmailQueueStatus.SENT}


@pytest.mark.asyncio
async def test_row_claimed_by_sweep_counts_as_deferred(notifier, email_repo, location, user_profile):
    original_claim = email_repo.claim

    async def sweep_got_there_first(email_id):
        await original_claim(email_id)
        return None

    email_repo.claim = sweep_got_there_first

    result = await notifier.notify("event-1", [make_contact("c1", email="c1@example.com")], user_profile, location)

    assert result["emails_deferred"] == 1
    assert result["emails_failed"] == 0
