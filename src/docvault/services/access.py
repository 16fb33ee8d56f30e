"""AccessControlService: resource visibility and role-based grants.

Two independent layers:

1. Resource visibility (``can_access`` / ``require_owner``): a principal may
   read a folder or file it owns or one flagged public. Used directly by the
   folder, file and share services.
2. RBAC: capability checks for administrative actions, resolved through the
   grant chain user -> role -> permission. Grants are explicit; a role's
   ``level`` never implies another role's permissions.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from sqlalchemy import delete, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from docvault.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from docvault.models.lifecycle import as_utc, utcnow

from .dialect import insert_if_absent
from .types import BootstrapResult
from .utils import permission_code, validate_permission_code, validate_role_code

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

    from docvault.models.rbac import (
        PermissionBase,
        RoleBase,
        RolePermissionBase,
        UserRoleBase,
    )

logger = logging.getLogger(__name__)

_R = TypeVar("_R", bound=Any)


class OwnedResource(Protocol):
    owner_id: str
    is_public: bool


def can_access(resource: OwnedResource, principal_id: str | None) -> bool:
    """True if *principal_id* owns *resource* or the resource is public."""
    if resource.is_public:
        return True
    return principal_id is not None and resource.owner_id == principal_id


def require_owner(resource: OwnedResource, actor_id: str, message: str) -> None:
    """Raise ``ForbiddenError(message)`` unless *actor_id* owns *resource*."""
    if resource.owner_id != actor_id:
        raise ForbiddenError(message)


# ---------------------------------------------------------------------------
# System catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PermissionSpec:
    resource: str
    action: str
    name: str
    module: str

    @property
    def code(self) -> str:
        return permission_code(self.resource, self.action)


ADMIN_ROLE = "admin"
USER_ROLE = "user"

SYSTEM_ROLES: dict[str, tuple[str, str, int]] = {
    ADMIN_ROLE: ("Administrator", "System administrator with every permission", 1000),
    USER_ROLE: ("User", "Regular user with basic file permissions", 100),
}

SYSTEM_PERMISSIONS: tuple[PermissionSpec, ...] = (
    PermissionSpec("user", "list", "List users", "user"),
    PermissionSpec("user", "create", "Create users", "user"),
    PermissionSpec("user", "read", "View users", "user"),
    PermissionSpec("user", "update", "Update users", "user"),
    PermissionSpec("user", "delete", "Delete users", "user"),
    PermissionSpec("user", "manage", "Manage users", "user"),
    PermissionSpec("file", "upload", "Upload files", "file"),
    PermissionSpec("file", "download", "Download files", "file"),
    PermissionSpec("file", "list", "List files", "file"),
    PermissionSpec("file", "read", "View files", "file"),
    PermissionSpec("file", "update", "Update files", "file"),
    PermissionSpec("file", "delete", "Delete files", "file"),
    PermissionSpec("file", "share", "Share files", "file"),
    PermissionSpec("folder", "create", "Create folders", "file"),
    PermissionSpec("folder", "list", "List folders", "file"),
    PermissionSpec("folder", "read", "View folders", "file"),
    PermissionSpec("folder", "update", "Update folders", "file"),
    PermissionSpec("folder", "delete", "Delete folders", "file"),
    PermissionSpec("permission", "list", "List permissions", "permission"),
    PermissionSpec("permission", "create", "Create permissions", "permission"),
    PermissionSpec("permission", "read", "View permissions", "permission"),
    PermissionSpec("permission", "update", "Update permissions", "permission"),
    PermissionSpec("permission", "delete", "Delete permissions", "permission"),
    PermissionSpec("role", "list", "List roles", "permission"),
    PermissionSpec("role", "create", "Create roles", "permission"),
    PermissionSpec("role", "read", "View roles", "permission"),
    PermissionSpec("role", "update", "Update roles", "permission"),
    PermissionSpec("role", "delete", "Delete roles", "permission"),
    PermissionSpec("system", "read", "View system settings", "system"),
    PermissionSpec("system", "update", "Update system settings", "system"),
    PermissionSpec("system", "admin", "Administer the system", "system"),
    PermissionSpec("audit", "read", "View audit logs", "audit"),
    PermissionSpec("audit", "admin", "Manage audit logs", "audit"),
)

USER_ROLE_PERMISSIONS: frozenset[str] = frozenset(
    {
        "file:upload",
        "file:download",
        "file:list",
        "file:read",
        "folder:create",
        "folder:list",
        "folder:read",
    }
)


class AccessControlService:
    """Role/permission CRUD, assignment, and permission resolution.

    Constructor receives the concrete models so callers can use custom
    SQLModel subclasses with different table names. Sessions are passed
    per call; methods flush but never commit.
    """

    def __init__(
        self,
        role_model: type[RoleBase],
        permission_model: type[PermissionBase],
        role_permission_model: type[RolePermissionBase],
        user_role_model: type[UserRoleBase],
        dialect: str = "sqlite",
    ) -> None:
        self._role_model = role_model
        self._permission_model = permission_model
        self._role_permission_model = role_permission_model
        self._user_role_model = user_role_model
        self.dialect = dialect

    # ------------------------------------------------------------------
    # Roles and permissions
    # ------------------------------------------------------------------

    async def create_role(
        self,
        session: AsyncSession,
        code: str,
        name: str,
        *,
        description: str = "",
        level: int = 0,
    ) -> RoleBase:
        validate_role_code(code)
        name = (name or "").strip()
        if not name or len(name) > 100:
            raise ValidationError("Role name must be 1-100 characters")
        model = self._role_model
        existing = await session.execute(select(model).where(model.code == code))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(f"Role code already exists: {code}")

        role = model(code=code, name=name, description=description, level=level)
        session.add(role)
        await self._flush_or_conflict(session, f"Role code already exists: {code}")
        logger.info("Created role %s (%s)", role.code, role.id)
        return role

    async def create_permission(
        self,
        session: AsyncSession,
        code: str,
        name: str,
        resource: str,
        action: str,
        module: str,
        *,
        description: str = "",
    ) -> PermissionBase:
        validate_permission_code(code)
        for label, value in (("name", name), ("resource", resource), ("action", action),
                             ("module", module)):
            if not (value or "").strip():
                raise ValidationError(f"Permission {label} cannot be empty")
        model = self._permission_model
        existing = await session.execute(select(model).where(model.code == code))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(f"Permission code already exists: {code}")

        permission = model(
            code=code,
            name=name.strip(),
            description=description,
            resource=resource.strip(),
            action=action.strip(),
            module=module.strip(),
        )
        session.add(permission)
        await self._flush_or_conflict(session, f"Permission code already exists: {code}")
        logger.info("Created permission %s (%s)", permission.code, permission.id)
        return permission

    async def get_role(self, session: AsyncSession, role_id: str) -> RoleBase:
        role = await session.get(self._role_model, role_id)
        if role is None:
            raise NotFoundError(f"Role not found: {role_id}")
        return role

    async def get_permission(self, session: AsyncSession, permission_id: str) -> PermissionBase:
        permission = await session.get(self._permission_model, permission_id)
        if permission is None:
            raise NotFoundError(f"Permission not found: {permission_id}")
        return permission

    async def list_roles(
        self, session: AsyncSession, *, include_inactive: bool = False
    ) -> list[RoleBase]:
        model = self._role_model
        query = select(model).order_by(model.level.desc(), model.code)  # type: ignore[union-attr]
        if not include_inactive:
            query = query.where(model.is_active.is_(True))
        result = await session.execute(query)
        return list(result.scalars().all())

    async def list_permissions(
        self, session: AsyncSession, *, module: str | None = None
    ) -> list[PermissionBase]:
        model = self._permission_model
        query = select(model).order_by(model.code)
        if module is not None:
            query = query.where(model.module == module)
        result = await session.execute(query)
        return list(result.scalars().all())

    async def delete_role(self, session: AsyncSession, role_id: str) -> None:
        """Delete a non-system role together with its grants and assignments."""
        role = await self.get_role(session, role_id)
        if not role.can_be_deleted():
            raise ForbiddenError(f"System role cannot be deleted: {role.code}")
        rp = self._role_permission_model
        ur = self._user_role_model
        await session.execute(delete(rp).where(rp.role_id == role.id))
        await session.execute(delete(ur).where(ur.role_id == role.id))
        await session.delete(role)
        await session.flush()
        logger.info("Deleted role %s (%s)", role.code, role.id)

    # ------------------------------------------------------------------
    # Grants and assignments
    # ------------------------------------------------------------------

    async def assign_permission_to_role(
        self,
        session: AsyncSession,
        role_id: str,
        permission_id: str,
        granted_by: str,
    ) -> RolePermissionBase:
        await self.get_role(session, role_id)
        await self.get_permission(session, permission_id)

        model = self._role_permission_model
        existing = await session.execute(
            select(model).where(model.role_id == role_id, model.permission_id == permission_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError("Permission is already granted to this role")

        grant = model(role_id=role_id, permission_id=permission_id, granted_by=granted_by)
        session.add(grant)
        await self._flush_or_conflict(session, "Permission is already granted to this role")
        logger.info("Granted permission %s to role %s by %s", permission_id, role_id, granted_by)
        return grant

    async def assign_role_to_user(
        self,
        session: AsyncSession,
        user_id: str,
        role_id: str,
        assigned_by: str,
        *,
        expires_at: datetime | None = None,
    ) -> UserRoleBase:
        if not user_id:
            raise ValidationError("user_id cannot be empty")
        await self.get_role(session, role_id)

        model = self._user_role_model
        existing = await session.execute(
            select(model).where(model.user_id == user_id, model.role_id == role_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError("Role is already assigned to this user")

        assignment = model(
            user_id=user_id,
            role_id=role_id,
            assigned_by=assigned_by,
            expires_at=as_utc(expires_at),
        )
        session.add(assignment)
        await self._flush_or_conflict(session, "Role is already assigned to this user")
        logger.info(
            "Assigned role %s to user %s by %s (expires %s)",
            role_id, user_id, assigned_by, assignment.expires_at,
        )
        return assignment

    async def revoke_permission_from_role(
        self, session: AsyncSession, role_id: str, permission_id: str
    ) -> None:
        """Hard-delete the grant row."""
        model = self._role_permission_model
        result = await session.execute(
            select(model).where(model.role_id == role_id, model.permission_id == permission_id)
        )
        grant = result.scalar_one_or_none()
        if grant is None:
            raise NotFoundError("Role permission grant not found")
        await session.delete(grant)
        await session.flush()
        logger.info("Revoked permission %s from role %s", permission_id, role_id)

    async def revoke_role_from_user(
        self, session: AsyncSession, user_id: str, role_id: str
    ) -> None:
        """Hard-delete the assignment row."""
        assignment = await self._get_assignment(session, user_id, role_id)
        await session.delete(assignment)
        await session.flush()
        logger.info("Revoked role %s from user %s", role_id, user_id)

    async def deactivate_user_role(
        self, session: AsyncSession, user_id: str, role_id: str
    ) -> UserRoleBase:
        """Soft-revoke: the row stays, ``is_active`` becomes False."""
        assignment = await self._get_assignment(session, user_id, role_id)
        assignment.is_active = False
        await session.flush()
        logger.info("Deactivated role %s for user %s", role_id, user_id)
        return assignment

    async def _get_assignment(
        self, session: AsyncSession, user_id: str, role_id: str
    ) -> UserRoleBase:
        model = self._user_role_model
        result = await session.execute(
            select(model).where(model.user_id == user_id, model.role_id == role_id)
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            raise NotFoundError("User role assignment not found")
        return assignment

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _effective_assignment(self, user_id: str) -> tuple[ColumnElement[bool], ...]:
        """Filters for assignments that are active and unexpired right now."""
        ur = self._user_role_model
        return (
            ur.user_id == user_id,
            ur.is_active.is_(True),
            or_(ur.expires_at.is_(None), ur.expires_at > utcnow()),  # type: ignore[union-attr]
        )

    async def check_permission(
        self,
        session: AsyncSession,
        user_id: str,
        resource: str,
        action: str,
    ) -> bool:
        """True iff the full grant chain for ``resource:action`` holds for *user_id*."""
        p = self._permission_model
        rp = self._role_permission_model
        r = self._role_model
        ur = self._user_role_model
        query = (
            select(p.id)
            .join(rp, rp.permission_id == p.id)
            .join(r, r.id == rp.role_id)
            .join(ur, ur.role_id == r.id)
            .where(
                p.code == permission_code(resource, action),
                p.is_active.is_(True),
                rp.is_active.is_(True),
                r.is_active.is_(True),
                *self._effective_assignment(user_id),
            )
            .limit(1)
        )
        result = await session.execute(query)
        return result.first() is not None

    async def check_role(self, session: AsyncSession, user_id: str, role_code: str) -> bool:
        r = self._role_model
        ur = self._user_role_model
        result = await session.execute(
            select(ur.id)
            .join(r, r.id == ur.role_id)
            .where(
                r.code == role_code,
                r.is_active.is_(True),
                *self._effective_assignment(user_id),
            )
            .limit(1)
        )
        return result.first() is not None

    async def get_user_roles(self, session: AsyncSession, user_id: str) -> list[RoleBase]:
        r = self._role_model
        ur = self._user_role_model
        result = await session.execute(
            select(r)
            .join(ur, ur.role_id == r.id)
            .where(r.is_active.is_(True), *self._effective_assignment(user_id))
            .order_by(r.code)
        )
        return _unique_by_id(result.scalars().all())

    async def get_user_permissions(
        self, session: AsyncSession, user_id: str
    ) -> list[PermissionBase]:
        """Every permission reachable through an effective grant chain, once each."""
        p = self._permission_model
        rp = self._role_permission_model
        r = self._role_model
        ur = self._user_role_model
        result = await session.execute(
            select(p)
            .join(rp, rp.permission_id == p.id)
            .join(r, r.id == rp.role_id)
            .join(ur, ur.role_id == r.id)
            .where(
                p.is_active.is_(True),
                rp.is_active.is_(True),
                r.is_active.is_(True),
                *self._effective_assignment(user_id),
            )
            .order_by(p.code)
        )
        return _unique_by_id(result.scalars().all())

    async def get_role_permissions(
        self, session: AsyncSession, role_id: str
    ) -> list[PermissionBase]:
        await self.get_role(session, role_id)
        p = self._permission_model
        rp = self._role_permission_model
        result = await session.execute(
            select(p)
            .join(rp, rp.permission_id == p.id)
            .where(
                rp.role_id == role_id,
                rp.is_active.is_(True),
                p.is_active.is_(True),
            )
            .order_by(p.code)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    async def bootstrap(
        self, session: AsyncSession, granted_by: str = "system"
    ) -> BootstrapResult:
        """Ensure the system roles, permission catalog and default grants exist.

        Safe to re-run: every row is inserted with ON CONFLICT DO NOTHING on
        its natural key, so a second run creates nothing.
        """
        outcome = BootstrapResult()
        now = utcnow()

        for code, (name, description, level) in SYSTEM_ROLES.items():
            outcome.roles_created += await insert_if_absent(
                session,
                self.dialect,
                self._role_model,
                {
                    "id": str(uuid.uuid4()),
                    "code": code,
                    "name": name,
                    "description": description,
                    "level": level,
                    "is_system": True,
                    "is_active": True,
                    "created_at": now,
                    "updated_at": now,
                },
                conflict_keys=["code"],
            )

        for entry in SYSTEM_PERMISSIONS:
            outcome.permissions_created += await insert_if_absent(
                session,
                self.dialect,
                self._permission_model,
                {
                    "id": str(uuid.uuid4()),
                    "code": entry.code,
                    "name": entry.name,
                    "description": "",
                    "resource": entry.resource,
                    "action": entry.action,
                    "module": entry.module,
                    "is_active": True,
                    "created_at": now,
                    "updated_at": now,
                },
                conflict_keys=["code"],
            )

        r = self._role_model
        p = self._permission_model
        roles = {
            role.code: role.id
            for role in (
                await session.execute(select(r).where(r.code.in_(list(SYSTEM_ROLES))))  # type: ignore[union-attr]
            ).scalars()
        }
        catalog = [entry.code for entry in SYSTEM_PERMISSIONS]
        permissions = {
            perm.code: perm.id
            for perm in (
                await session.execute(select(p).where(p.code.in_(catalog)))  # type: ignore[union-attr]
            ).scalars()
        }

        wanted = [(ADMIN_ROLE, code) for code in catalog] + [
            (USER_ROLE, code) for code in catalog if code in USER_ROLE_PERMISSIONS
        ]
        for role_code, perm_code in wanted:
            outcome.grants_created += await insert_if_absent(
                session,
                self.dialect,
                self._role_permission_model,
                {
                    "id": str(uuid.uuid4()),
                    "role_id": roles[role_code],
                    "permission_id": permissions[perm_code],
                    "granted_by": granted_by,
                    "is_active": True,
                    "created_at": now,
                },
                conflict_keys=["role_id", "permission_id"],
            )

        await session.flush()
        logger.info(
            "RBAC bootstrap complete: %d roles, %d permissions, %d grants created",
            outcome.roles_created,
            outcome.permissions_created,
            outcome.grants_created,
        )
        return outcome

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _flush_or_conflict(session: AsyncSession, message: str) -> None:
        try:
            await session.flush()
        except IntegrityError as e:
            raise ConflictError(message) from e


def _unique_by_id(rows: Iterable[_R]) -> list[_R]:
    seen: dict[str, _R] = {}
    for row in rows:
        seen.setdefault(row.id, row)
    return list(seen.values())
