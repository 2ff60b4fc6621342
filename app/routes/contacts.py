"""
contacts.py
-----------
Purpose:
    The signed-in user's own emergency contacts. These rows are what an SOS
    fans out to, ordered by priority.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.db.helpers import DatabaseError
from app.dependencies import get_current_user_id, get_profile_repository
from app.infrastructure.observability.logging import get_logger
from app.models.api.contact_request import EmergencyContactCreateRequest, EmergencyContactListResponse
from app.models.domain.profile_domain import EmergencyContact
from app.repositories.profile_repository import ProfileRepository

router = APIRouter(prefix="/contacts", tags=["contacts"])
logger = get_logger(__name__)


@router.get("", response_model=EmergencyContactListResponse)
async def list_contacts(
    user_id: str = Depends(get_current_user_id),
    profiles: ProfileRepository = Depends(get_profile_repository),
):
    try:
        contacts = await profiles.list_emergency_contacts(user_id)
    except DatabaseError as e:
        logger.error("Failed to list emergency contacts", user_id=user_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Contact store unavailable") from e
    return EmergencyContactListResponse(contacts=contacts)


@router.post("", response_model=EmergencyContact, status_code=status.HTTP_201_CREATED)
async def create_contact(
    body: EmergencyContactCreateRequest,
    user_id: str = Depends(get_current_user_id),
    profiles: ProfileRepository = Depends(get_profile_repository),
):
    try:
        return await profiles.create_emergency_contact(
            user_id,
            name=body.name,
            phone=body.phone,
            email=body.email,
            relationship=body.relationship,
            priority=body.priority,
            contact_type=body.type,
        )
    except DatabaseError as e:
        logger.error("Failed to create emergency contact", user_id=user_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Contact store unavailable") from e


@router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contact(
    contact_id: str,
    user_id: str = Depends(get_current_user_id),
    profiles: ProfileRepository = Depends(get_profile_repository),
):
    try:
        deleted = await profiles.delete_emergency_contact(user_id, contact_id)
    except DatabaseError as e:
        logger.error("Failed to delete emergency contact", user_id=user_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Contact store unavailable") from e
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact not found")
