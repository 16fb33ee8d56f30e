"""Role-based access control models.

Roles and permissions are process-wide records with no owner. A user holds
a permission only through the grant chain
``UserRole -> Role -> RolePermission -> Permission`` with every link active
and the assignment unexpired.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from docvault.models.lifecycle import is_past, utcnow


class RoleBase(SQLModel):
    """Base fields for a role. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    code: str = Field(unique=True, max_length=50)
    name: str = Field(max_length=100)
    description: str = Field(default="")
    level: int = Field(default=0)
    is_system: bool = Field(default=False)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )

    def can_be_deleted(self) -> bool:
        return not self.is_system


class Role(RoleBase, table=True):
    """Default role table: ``roles``."""

    __tablename__ = "roles"


class PermissionBase(SQLModel):
    """Base fields for a permission. Codes follow ``resource:action``."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    code: str = Field(unique=True, max_length=100)
    name: str = Field(max_length=100)
    description: str = Field(default="")
    resource: str = Field(max_length=50, index=True)
    action: str = Field(max_length=50)
    module: str = Field(max_length=50, index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class Permission(PermissionBase, table=True):
    """Default permission table: ``permissions``."""

    __tablename__ = "permissions"


class RolePermissionBase(SQLModel):
    """Grant of a permission to a role."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    role_id: str = Field(index=True)
    permission_id: str = Field(index=True)
    granted_by: str = Field(default="")
    is_active: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class RolePermission(RolePermissionBase, table=True):
    """Default grant table: ``role_permissions``."""

    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_pair"),
    )


class UserRoleBase(SQLModel):
    """Assignment of a role to a user, optionally time-limited."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    role_id: str = Field(index=True)
    assigned_by: str = Field(default="")
    expires_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    is_active: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )

    def is_expired(self, now: datetime | None = None) -> bool:
        return is_past(self.expires_at, now)

    def is_effective(self, now: datetime | None = None) -> bool:
        """Active and unexpired; expired and deactivated rows are retained but inert."""
        return self.is_active and not self.is_expired(now)


class UserRole(UserRoleBase, table=True):
    """Default assignment table: ``user_roles``."""

    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role_id", name="uq_user_roles_pair"),)
