"""
FastAPI dependency getters.

Routes ask for services through these so tests can swap any of them with
app.dependency_overrides without building a container.
"""

from fastapi import Depends, HTTPException, Request, status

from app.auth.verify import auth_dependency
from app.container import ServiceContainer
from app.repositories.profile_repository import ProfileRepository
from app.repositories.sos_repository import SOSEventRepository
from app.services.email_queue_processor import EmailQueueProcessor
from app.services.sos.event_service import SOSEventService
from app.services.sos.orchestrator import SOSTriggerService


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready")
    return container


def get_current_user_id(claims: dict = Depends(auth_dependency)) -> str:
    return claims["sub"]


def get_sos_trigger_service(container: ServiceContainer = Depends(get_container)) -> SOSTriggerService:
    return container.sos_trigger


def get_sos_event_service(container: ServiceContainer = Depends(get_container)) -> SOSEventService:
    return container.sos_events


def get_email_queue_processor(container: ServiceContainer = Depends(get_container)) -> EmailQueueProcessor:
    return container.email_queue


def get_profile_repository(container: ServiceContainer = Depends(get_container)) -> ProfileRepository:
    return container.profiles


def get_sos_repository(container: ServiceContainer = Depends(get_container)) -> SOSEventRepository:
    return container.events
