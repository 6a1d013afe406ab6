"""init family tree schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Lineage nodes; soft-deleted rows stay for undo.
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("hid", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("gender", sa.String(), nullable=False),
        sa.Column("generation", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("sibling_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("father_id", sa.String(), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("mother_id", sa.String(), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="alive"),
        sa.Column("kunya", sa.String(), nullable=True),
        sa.Column("nickname", sa.String(), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("birth_place", sa.String(), nullable=True),
        sa.Column("current_residence", sa.String(), nullable=True),
        sa.Column("occupation", sa.String(), nullable=True),
        sa.Column("education", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("photo_url", sa.String(), nullable=True),
        sa.Column("dob_data", postgresql.JSONB(), nullable=True),
        sa.Column("dod_data", postgresql.JSONB(), nullable=True),
        sa.Column("profile_visibility", sa.String(), nullable=False, server_default="public"),
        sa.Column("role", sa.String(), nullable=False, server_default="user"),
        sa.Column("user_id", sa.String(), nullable=True, unique=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_profiles_hid", "profiles", ["hid"], unique=False)
    op.create_index(
        "ix_profiles_father_live",
        "profiles",
        ["father_id"],
        unique=False,
        postgresql_where=sa.text("deleted_at IS NULL"),
    )
    op.create_index(
        "ix_profiles_mother_live",
        "profiles",
        ["mother_id"],
        unique=False,
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    op.create_table(
        "marriages",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("husband_id", sa.String(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("wife_id", sa.String(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="current"),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_marriages_husband_id", "marriages", ["husband_id"], unique=False)
    op.create_index("ix_marriages_wife_id", "marriages", ["wife_id"], unique=False)
    op.create_index(
        "uq_marriages_current_pair",
        "marriages",
        ["husband_id", "wife_id"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL AND status = 'current'"),
    )

    op.create_table(
        "operation_groups",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("group_type", sa.String(), nullable=False),
        sa.Column("operation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("undo_state", sa.String(), nullable=False, server_default="active"),
        sa.Column("undone_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("undone_by", sa.String(), nullable=True),
        sa.Column("undo_reason", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_operation_groups_created_by", "operation_groups", ["created_by"], unique=False)

    # Append-only mutation history; only the undo columns change after insert.
    op.create_table(
        "audit_log",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("table_name", sa.String(), nullable=False),
        sa.Column("record_id", sa.String(), nullable=False),
        sa.Column("action_kind", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("old_data", postgresql.JSONB(), nullable=True),
        sa.Column("new_data", postgresql.JSONB(), nullable=True),
        sa.Column("changed_fields", postgresql.JSONB(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("severity", sa.String(), nullable=False, server_default="low"),
        sa.Column("operation_group_id", sa.String(), sa.ForeignKey("operation_groups.id"), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        sa.Column("is_undoable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("undo_of_id", sa.BigInteger(), sa.ForeignKey("audit_log.id"), nullable=True),
        sa.Column("undone_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("undone_by", sa.String(), nullable=True),
        sa.Column("undo_reason", sa.Text(), nullable=True),
        sa.CheckConstraint("action_kind ~ '^[a-z][a-z0-9_]*$'", name="ck_audit_log_action_kind_format"),
    )
    op.create_index("ix_audit_log_record_id", "audit_log", ["record_id"], unique=False)
    op.create_index("ix_audit_log_action_kind", "audit_log", ["action_kind"], unique=False)
    op.create_index("ix_audit_log_operation_group_id", "audit_log", ["operation_group_id"], unique=False)
    op.create_index("ix_audit_log_record_created", "audit_log", ["record_id", "created_at"], unique=False)
    op.create_index("ix_audit_log_actor_created", "audit_log", ["actor_id", "created_at"], unique=False)

    op.create_table(
        "branch_moderators",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("profile_id", sa.String(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("branch_hid", sa.String(), nullable=False),
        sa.Column("assigned_by", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_branch_moderators_profile_id", "branch_moderators", ["profile_id"], unique=False)
    op.create_index("ix_branch_moderators_branch_hid", "branch_moderators", ["branch_hid"], unique=False)

    op.create_table(
        "suggestion_blocks",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("blocked_profile_id", sa.String(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("blocked_by", sa.String(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("unblocked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unblocked_by", sa.String(), nullable=True),
    )
    op.create_index(
        "ix_suggestion_blocks_blocked_profile_id", "suggestion_blocks", ["blocked_profile_id"], unique=False
    )

    op.create_table(
        "edit_suggestions",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("profile_id", sa.String(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("submitter_id", sa.String(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("field_name", sa.String(), nullable=False),
        sa.Column("old_value", postgresql.JSONB(), nullable=True),
        sa.Column("new_value", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("reviewed_by", sa.String(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_edit_suggestions_profile_id", "edit_suggestions", ["profile_id"], unique=False)
    op.create_index("ix_edit_suggestions_submitter_id", "edit_suggestions", ["submitter_id"], unique=False)
    op.create_index("ix_edit_suggestions_status", "edit_suggestions", ["status"], unique=False)


def downgrade() -> None:
    op.drop_table("edit_suggestions")
    op.drop_table("suggestion_blocks")
    op.drop_table("branch_moderators")
    op.drop_table("audit_log")
    op.drop_table("operation_groups")
    op.drop_table("marriages")
    op.drop_table("profiles")
