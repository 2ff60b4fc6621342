import jwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.config import settings
from app.dependencies import get_email_queue_processor
from app.models.domain.email_queue_domain import EmailQueueStatus
from app.routes import email_processor
from app.services.email_queue_processor import EmailQueueProcessor


@pytest.fixture
def client(email_repo, email_provider):
    app = FastAPI()
    app.include_router(email_processor.router)
    processor = EmailQueueProcessor(email_repo, email_provider, max_retries=3)
    app.dependency_overrides[get_email_queue_processor] = lambda: processor
    return TestClient(app)


@pytest.fixture
def service_headers():
    return {"Authorization": f"Bearer {settings.SUPABASE_SERVICE_ROLE_KEY}"}


def test_requires_service_role_key(client):
    assert client.post("/email-processor", json={"action": "process_queue"}).status_code == 401

    response = client.post(
        "/email-processor",
        json={"action": "process_queue"},
        headers={"Authorization": "Bearer some-user-token"},
    )
    assert response.status_code == 401


def test_service_role_jwt_is_not_the_service_role_key(client):
    # Only the key itself passes; a token signed with it is still rejected
    token = jwt.encode({"role": "service_role"}, settings.SUPABASE_SERVICE_ROLE_KEY, algorithm="HS256")

    response = client.post(
        "/email-processor",
        json={"action": "process_queue"},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 401


def test_process_queue_empty(client, service_headers):
    response = client.post("/email-processor", json={"action": "process_queue"}, headers=service_headers)

    assert response.status_code == 200
    assert response.json() == {"success": True, "processed": 0, "sent": 0, "failed": 0}


def test_process_queue_sends_due_rows(client, service_headers, email_repo):
    email_repo.add(recipient_email="a@example.com")
    email_repo.add(recipient_email="b@example.com")

    response = client.post(
        "/email-processor", json={"action": "process_queue", "max_emails": 1}, headers=service_headers
    )

    assert response.json()["processed"] == 1
    assert sum(r.status == EmailQueueStatus.SENT for r in email_repo.rows.values()) == 1


def test_send_single(client, service_headers, email_repo):
    item = email_repo.add()

    response = client.post(
        "/email-processor", json={"action": "send_single", "email_id": item.id}, headers=service_headers
    )

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["message_id"] == "msg-1"


def test_send_single_requires_email_id(client, service_headers):
    response = client.post("/email-processor", json={"action": "send_single"}, headers=service_headers)

    assert response.status_code == 422


def test_send_single_unknown_email(client, service_headers):
    response = client.post(
        "/email-processor", json={"action": "send_single", "email_id": "nope"}, headers=service_headers
    )

    assert response.status_code == 404


def test_send_single_provider_failure_is_502(client, service_headers, email_repo, email_provider):
    item = email_repo.add(recipient_email="bad@example.com")
    email_provider.fail_for.add("bad@example.com")

    response = client.post(
        "/email-processor", json={"action": "send_single", "email_id": item.id}, headers=service_headers
    )

    assert response.status_code == 502
    assert response.json()["success"] is False
    assert email_repo.rows[item.id].status == EmailQueueStatus.FAILED


def test_unknown_action_rejected(client, service_headers):
    response = client.post("/email-processor", json={"action": "purge"}, headers=service_headers)

    assert response.status_code == 422


def test_retry_failed_and_list_exhausted(client, service_headers, email_repo):
    retryable = email_repo.add(status=EmailQueueStatus.FAILED)
    exhausted = email_repo.add(status=EmailQueueStatus.FAILED, retry_count=3, error_message="bounced")

    response = client.post("/email-processor", json={"action": "retry_failed"}, headers=service_headers)

    assert response.json() == {"success": True, "retried": 1, "succeeded": 1}
    assert email_repo.rows[retryable.id].status == EmailQueueStatus.SENT

    failed = client.get("/email-processor/failed", headers=service_headers)
    assert failed.status_code == 200
    assert failed.json()["count"] == 1
    assert failed.json()["emails"][0]["id"] == exhausted.id
