from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on Postgres; plain JSON keeps the schema portable to the SQLite test database.
JSONType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntId = BigInteger().with_variant(Integer(), "sqlite")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (
        Index("ix_profiles_father_live", "father_id", postgresql_where=text("deleted_at IS NULL")),
        Index("ix_profiles_mother_live", "mother_id", postgresql_where=text("deleted_at IS NULL")),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    # Dot-separated lineage path; munasib spouses have none.
    hid: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    name: Mapped[str] = mapped_column(String)
    gender: Mapped[str] = mapped_column(String)
    generation: Mapped[int] = mapped_column(Integer, default=1)
    sibling_order: Mapped[int] = mapped_column(Integer, default=0)
    father_id: Mapped[str | None] = mapped_column(String, ForeignKey("profiles.id"), nullable=True)
    mother_id: Mapped[str | None] = mapped_column(String, ForeignKey("profiles.id"), nullable=True)
    status: Mapped[str] = mapped_column(String, default="alive")
    kunya: Mapped[str | None] = mapped_column(String, nullable=True)
    nickname: Mapped[str | None] = mapped_column(String, nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    birth_place: Mapped[str | None] = mapped_column(String, nullable=True)
    current_residence: Mapped[str | None] = mapped_column(String, nullable=True)
    occupation: Mapped[str | None] = mapped_column(String, nullable=True)
    education: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    photo_url: Mapped[str | None] = mapped_column(String, nullable=True)
    # Hijri/Gregorian date parts as entered by the client.
    dob_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    dod_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    profile_visibility: Mapped[str] = mapped_column(String, default="public")
    role: Mapped[str] = mapped_column(String, default="user")
    # Authentication identity that owns this node.
    user_id: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Optimistic-lock token; +1 on every successful mutation.
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )


class Marriage(Base):
    __tablename__ = "marriages"
    __table_args__ = (
        # One live current marriage per exact pair; past and deleted rows are exempt.
        Index(
            "uq_marriages_current_pair",
            "husband_id",
            "wife_id",
            unique=True,
            postgresql_where=text("deleted_at IS NULL AND status = 'current'"),
            sqlite_where=text("deleted_at IS NULL AND status = 'current'"),
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    husband_id: Mapped[str] = mapped_column(String, ForeignKey("profiles.id"), index=True)
    wife_id: Mapped[str] = mapped_column(String, ForeignKey("profiles.id"), index=True)
    status: Mapped[str] = mapped_column(String, default="current")
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )


class OperationGroup(Base):
    __tablename__ = "operation_groups"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    # batch_save | cascade_delete | batch_reorder
    group_type: Mapped[str] = mapped_column(String)
    operation_count: Mapped[int] = mapped_column(Integer, default=0)
    # active -> undone, set once.
    undo_state: Mapped[str] = mapped_column(String, default="active")
    undone_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    undone_by: Mapped[str | None] = mapped_column(String, nullable=True)
    undo_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )


class AuditLogEntry(Base):
    __tablename__ = "audit_log"
    __table_args__ = (
        # Lowercase token vocabulary; SQLite has no regex operator so only Postgres enforces it in DDL.
        CheckConstraint(
            "action_kind ~ '^[a-z][a-z0-9_]*$'", name="ck_audit_log_action_kind_format"
        ).ddl_if(dialect="postgresql"),
        Index("ix_audit_log_record_created", "record_id", "created_at"),
        Index("ix_audit_log_actor_created", "actor_id", "created_at"),
    )

    # Monotonic id doubles as the ordering key within a group.
    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )
    table_name: Mapped[str] = mapped_column(String)
    record_id: Mapped[str] = mapped_column(String, index=True)
    action_kind: Mapped[str] = mapped_column(String, index=True)
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    old_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    new_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    changed_fields: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    severity: Mapped[str] = mapped_column(String, default="low")
    operation_group_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("operation_groups.id"), nullable=True, index=True
    )
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JSONType, default=dict)
    # False for compensating records and informational kinds.
    is_undoable: Mapped[bool] = mapped_column(Boolean, default=True)
    undo_of_id: Mapped[int | None] = mapped_column(BigIntId, ForeignKey("audit_log.id"), nullable=True)
    # Undo state: the only columns that change after insert, set exactly once.
    undone_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    undone_by: Mapped[str | None] = mapped_column(String, nullable=True)
    undo_reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class BranchModerator(Base):
    __tablename__ = "branch_moderators"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    profile_id: Mapped[str] = mapped_column(String, ForeignKey("profiles.id"), index=True)
    # Moderation scope: this HID and everything below it.
    branch_hid: Mapped[str] = mapped_column(String, index=True)
    assigned_by: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class SuggestionBlock(Base):
    __tablename__ = "suggestion_blocks"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    blocked_profile_id: Mapped[str] = mapped_column(String, ForeignKey("profiles.id"), index=True)
    blocked_by: Mapped[str | None] = mapped_column(String, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )
    unblocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    unblocked_by: Mapped[str | None] = mapped_column(String, nullable=True)


class EditSuggestion(Base):
    __tablename__ = "edit_suggestions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    profile_id: Mapped[str] = mapped_column(String, ForeignKey("profiles.id"), index=True)
    submitter_id: Mapped[str] = mapped_column(String, ForeignKey("profiles.id"), index=True)
    field_name: Mapped[str] = mapped_column(String)
    old_value: Mapped[Any] = mapped_column(JSONType, nullable=True)
    new_value: Mapped[Any] = mapped_column(JSONType, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # pending -> approved | rejected
    status: Mapped[str] = mapped_column(String, default="pending", index=True)
    reviewed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )
