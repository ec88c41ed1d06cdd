from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import DateTime, ForeignKeyConstraint, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

ACTIVE_ROW = text("deleted_at IS NULL")


def now_utc() -> datetime:
    return datetime.now(UTC)


class UserStatus(StrEnum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class UserType(StrEnum):
    ADMIN = "ADMIN"
    STANDARD = "STANDARD"
    PRIVILEGED = "PRIVILEGED"


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=now_utc, sa_type=DateTime(timezone=True))
    deleted_at: datetime | None = Field(default=None, index=True, sa_type=DateTime(timezone=True))


class Permission(SQLModel, table=True):
    __tablename__ = "permissions"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    code: str = Field(index=True, unique=True)
    description: str
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))


class User(SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("tenant_id", "id", name="uq_users_tenant_id_id"),
        Index(
            "uq_users_tenant_email_active",
            "tenant_id",
            "email",
            unique=True,
            postgresql_where=ACTIVE_ROW,
            sqlite_where=ACTIVE_ROW,
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    email: str = Field(index=True)
    name: str
    password_hash: str
    status: UserStatus = Field(default=UserStatus.ACTIVE, index=True)
    user_type: UserType = Field(default=UserType.STANDARD)
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=now_utc, sa_type=DateTime(timezone=True))
    deleted_at: datetime | None = Field(default=None, index=True, sa_type=DateTime(timezone=True))


class Role(SQLModel, table=True):
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("tenant_id", "id", name="uq_roles_tenant_id_id"),
        Index(
            "uq_roles_tenant_name_active",
            "tenant_id",
            "name",
            unique=True,
            postgresql_where=ACTIVE_ROW,
            sqlite_where=ACTIVE_ROW,
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    name: str = Field(index=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=now_utc, sa_type=DateTime(timezone=True))
    deleted_at: datetime | None = Field(default=None, index=True, sa_type=DateTime(timezone=True))


class Group(SQLModel, table=True):
    __tablename__ = "groups"
    __table_args__ = (
        UniqueConstraint("tenant_id", "id", name="uq_groups_tenant_id_id"),
        Index(
            "uq_groups_tenant_name_active",
            "tenant_id",
            "name",
            unique=True,
            postgresql_where=ACTIVE_ROW,
            sqlite_where=ACTIVE_ROW,
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    name: str = Field(index=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=now_utc, sa_type=DateTime(timezone=True))
    deleted_at: datetime | None = Field(default=None, index=True, sa_type=DateTime(timezone=True))


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"
    __table_args__ = (
        ForeignKeyConstraint(
            ["tenant_id", "user_id"],
            ["users.tenant_id", "users.id"],
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["tenant_id", "role_id"],
            ["roles.tenant_id", "roles.id"],
            ondelete="CASCADE",
        ),
        Index("ix_user_roles_tenant_user", "tenant_id", "user_id"),
        Index("ix_user_roles_tenant_role", "tenant_id", "role_id"),
    )

    tenant_id: str = Field(primary_key=True)
    user_id: str = Field(primary_key=True)
    role_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))


class GroupMember(SQLModel, table=True):
    __tablename__ = "group_members"
    __table_args__ = (
        ForeignKeyConstraint(
            ["tenant_id", "group_id"],
            ["groups.tenant_id", "groups.id"],
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["tenant_id", "user_id"],
            ["users.tenant_id", "users.id"],
            ondelete="CASCADE",
        ),
        Index("ix_group_members_tenant_group", "tenant_id", "group_id"),
        Index("ix_group_members_tenant_user", "tenant_id", "user_id"),
    )

    tenant_id: str = Field(primary_key=True)
    group_id: str = Field(primary_key=True)
    user_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))


class GroupRole(SQLModel, table=True):
    __tablename__ = "group_roles"
    __table_args__ = (
        ForeignKeyConstraint(
            ["tenant_id", "group_id"],
            ["groups.tenant_id", "groups.id"],
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["tenant_id", "role_id"],
            ["roles.tenant_id", "roles.id"],
            ondelete="CASCADE",
        ),
        Index("ix_group_roles_tenant_group", "tenant_id", "group_id"),
        Index("ix_group_roles_tenant_role", "tenant_id", "role_id"),
    )

    tenant_id: str = Field(primary_key=True)
    group_id: str = Field(primary_key=True)
    role_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))


class RolePermission(SQLModel, table=True):
    __tablename__ = "role_permissions"

    role_id: str = Field(foreign_key="roles.id", primary_key=True)
    permission_id: str = Field(foreign_key="permissions.id", primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True, sa_type=DateTime(timezone=True))


class Principal(BaseModel):
    """Authenticated caller as handed over by the token layer."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    tenant_id: str


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class TenantCreate(BaseModel):
    name: str = PydanticField(min_length=1)


class TenantUpdate(BaseModel):
    name: str = PydanticField(min_length=1)


class TenantRead(ORMReadModel):
    id: str
    name: str
    created_at: datetime
    updated_at: datetime


class UserCreate(BaseModel):
    email: str = PydanticField(min_length=3)
    password: str = PydanticField(min_length=1)
    name: str = PydanticField(min_length=1)
    status: UserStatus = UserStatus.ACTIVE
    user_type: UserType = UserType.STANDARD
    role_ids: list[str] = PydanticField(default_factory=list)


class UserUpdate(BaseModel):
    email: str | None = PydanticField(default=None, min_length=3)
    password: str | None = PydanticField(default=None, min_length=1)
    name: str | None = PydanticField(default=None, min_length=1)
    status: UserStatus | None = None
    user_type: UserType | None = None
    role_ids: list[str] | None = None


class UserRead(ORMReadModel):
    id: str
    tenant_id: str
    email: str
    name: str
    status: UserStatus
    user_type: UserType
    role_ids: list[str] = PydanticField(default_factory=list)
    created_at: datetime
    updated_at: datetime


class RoleCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    description: str | None = None
    permission_codes: list[str] | None = None


class RoleUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=1)
    description: str | None = None
    permission_codes: list[str] | None = None


class RoleRead(ORMReadModel):
    id: str
    tenant_id: str
    name: str
    description: str | None = None
    permission_codes: list[str] = PydanticField(default_factory=list)
    created_at: datetime
    updated_at: datetime


class GroupCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    description: str | None = None


class GroupUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=1)
    description: str | None = None


class GroupRead(ORMReadModel):
    id: str
    tenant_id: str
    name: str
    description: str | None = None
    member_user_ids: list[str] = PydanticField(default_factory=list)
    role_ids: list[str] = PydanticField(default_factory=list)
    created_at: datetime
    updated_at: datetime


class PermissionRead(ORMReadModel):
    id: str
    code: str
    description: str


class PermissionCodesReplace(BaseModel):
    permission_codes: list[str]


class UserIdsReplace(BaseModel):
    user_ids: list[str]


class RoleIdsReplace(BaseModel):
    role_ids: list[str]


class LoginRequest(BaseModel):
    tenant_id: str
    email: str
    password: str


class BootstrapAdminRequest(BaseModel):
    tenant_id: str
    email: str = PydanticField(min_length=3)
    password: str = PydanticField(min_length=1)
    name: str = "Administrator"


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    permissions: list[str]


class MeRead(BaseModel):
    user: UserRead
    permissions: list[str]
