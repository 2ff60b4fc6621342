"""
Persistence for profiles, emergency contacts and family groups.

Everything the SOS pipeline needs to know about "who should hear about this"
is read through here. Rows are never deleted except for user-owned contacts.
"""

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one
from app.db.pool import DatabasePoolManager
from app.infrastructure.observability.logging import get_logger
from app.models.domain.profile_domain import (
    ContactType,
    EmergencyContact,
    FamilyGroup,
    FamilyMember,
    Profile,
)

logger = get_logger(__name__)


class ProfileRepositoryError(DatabaseError):
    """More specific exception for profile/contact persistence failures."""


class ProfileRepository:
    CONTACT_COLUMNS = "id, user_id, name, phone, email, relationship, priority, type"
    MEMBER_COLUMNS = """
        m.id, m.group_id, m.user_id, m.status, m.billing_status,
        p.first_name, p.last_name
    """

    def __init__(self, db: DatabasePoolManager):
        self.db = db

    @staticmethod
    def _row_to_contact(row: dict) -> EmergencyContact:
        return EmergencyContact(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            name=row["name"],
            phone=row.get("phone"),
            email=row.get("email"),
            relationship=row.get("relationship"),
            priority=row.get("priority") or 1,
            type=row.get("type") or ContactType.BOTH,
        )

    @staticmethod
    def _row_to_member(row: dict) -> FamilyMember:
        return FamilyMember(
            id=str(row["id"]),
            group_id=str(row["group_id"]),
            user_id=str(row["user_id"]),
            status=row["status"],
            billing_status=row.get("billing_status") or "active",
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
        )

    async def get_profile(self, user_id: str) -> Profile | None:
        row = await fetch_one(
            self.db,
            """
            SELECT user_id, first_name, last_name, email, phone,
                   location_sharing_enabled, subscription_regions,
                   created_at, updated_at
            FROM profiles
            WHERE user_id = %s
            """,
            (user_id,),
        )
        if not row:
            return None
        row["user_id"] = str(row["user_id"])
        row["subscription_regions"] = row.get("subscription_regions") or []
        return Profile(**row)

    async def list_emergency_contacts(self, user_id: str) -> list[EmergencyContact]:
        """Contacts of a user, lowest priority number first."""
        rows = await fetch_all(
            self.db,
            f"""
            SELECT {self.CONTACT_COLUMNS}
            FROM emergency_contacts
            WHERE user_id = %s
            ORDER BY priority ASC, id ASC
            """,
            (user_id,),
        )
        return [self._row_to_contact(row) for row in rows]

    async def create_emergency_contact(
        self,
        user_id: str,
        *,
        name: str,
        phone: str | None,
        email: str | None,
        relationship: str | None,
        priority: int,
        contact_type: ContactType,
    ) -> EmergencyContact:
        row = await fetch_one(
            self.db,
            f"""
            INSERT INTO emergency_contacts (user_id, name, phone, email, relationship, priority, type)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING {self.CONTACT_COLUMNS}
            """,
            (user_id, name, phone, email, relationship, priority, contact_type.value),
        )
        if not row:
            raise ProfileRepositoryError(
                "Failed to create emergency contact", operation="create_emergency_contact"
            )

        logger.info("Emergency contact created", user_id=user_id, contact_id=str(row["id"]))
        return self._row_to_contact(row)

    async def delete_emergency_contact(self, user_id: str, contact_id: str) -> bool:
        deleted = await execute_query(
            self.db,
            "DELETE FROM emergency_contacts WHERE id = %s AND user_id = %s",
            (contact_id, user_id),
        )
        if deleted:
            logger.info("Emergency contact deleted", user_id=user_id, contact_id=contact_id)
        return deleted > 0

    async def get_owned_family_group(self, user_id: str) -> FamilyGroup | None:
        row = await fetch_one(
            self.db,
            """
            SELECT id, owner_user_id, seat_quota
            FROM family_groups
            WHERE owner_user_id = %s
            ORDER BY created_at ASC
            LIMIT 1
            """,
            (user_id,),
        )
        if not row:
            return None
        return FamilyGroup(
            id=str(row["id"]),
            owner_user_id=str(row["owner_user_id"]),
            seat_quota=row.get("seat_quota") or 0,
        )

    async def resolve_family_group(self, user_id: str) -> str | None:
        """
        Group an SOS from this user fans out to.

        An owned group wins; otherwise the group of the user's active
        membership. Users in neither get None.
        """
        owned = await self.get_owned_family_group(user_id)
        if owned:
            return owned.id

        row = await fetch_one(
            self.db,
            """
            SELECT group_id
            FROM family_memberships
            WHERE user_id = %s AND status = 'active'
            ORDER BY created_at ASC
            LIMIT 1
            """,
            (user_id,),
        )
        return str(row["group_id"]) if row else None

    async def list_active_members(self, group_id: str) -> list[FamilyMember]:
        rows = await fetch_all(
            self.db,
            f"""
            SELECT {self.MEMBER_COLUMNS}
            FROM family_memberships m
            LEFT JOIN profiles p ON p.user_id = m.user_id
            WHERE m.group_id = %s AND m.status = 'active'
            ORDER BY m.created_at ASC
            """,
            (group_id,),
        )
        return [self._row_to_member(row) for row in rows]

    async def get_group_owner(self, group_id: str) -> FamilyMember | None:
        """
        The group's owner in FamilyMember form.

        Owners hold no family_memberships row, so the group id stands in for
        the membership id and the owner always counts as active.
        """
        row = await fetch_one(
            self.db,
            """
            SELECT g.id, g.id AS group_id, g.owner_user_id AS user_id,
                   'active' AS status, 'active' AS billing_status,
                   p.first_name, p.last_name
            FROM family_groups g
            LEFT JOIN profiles p ON p.user_id = g.owner_user_id
            WHERE g.id = %s
            """,
            (group_id,),
        )
        return self._row_to_member(row) if row else None

    async def get_active_membership(self, group_id: str, user_id: str) -> FamilyMember | None:
        row = await fetch_one(
            self.db,
            f"""
            SELECT {self.MEMBER_COLUMNS}
            FROM family_memberships m
            LEFT JOIN profiles p ON p.user_id = m.user_id
            WHERE m.group_id = %s AND m.user_id = %s AND m.status = 'active'
            """,
            (group_id, user_id),
        )
        return self._row_to_member(row) if row else None
