"""routine session core schema

Revision ID: 0001_routine_core_schema
Revises:
Create Date: 2026-10-18 09:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_routine_core_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


profile_role = postgresql.ENUM("parent", "child", "admin", name="profile_role", create_type=False)
routine_session_status = postgresql.ENUM(
    "scheduled",
    "in_progress",
    "completed",
    "skipped",
    "expired",
    name="routine_session_status",
    create_type=False,
)
point_transaction_type = postgresql.ENUM(
    "task_completion",
    "routine_bonus",
    "manual_adjustment",
    "reward_redeem",
    name="point_transaction_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    profile_role.create(bind, checkfirst=True)
    routine_session_status.create(bind, checkfirst=True)
    point_transaction_type.create(bind, checkfirst=True)

    op.create_table(
        "families",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "profiles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("family_id", sa.Integer(), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("role", profile_role, nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["family_id"], ["families.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_profiles_family_id", "profiles", ["family_id"])

    op.create_table(
        "routines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("family_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("auto_close_after_minutes", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["family_id"], ["families.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "routine_tasks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("routine_id", sa.Integer(), nullable=False),
        sa.Column("child_profile_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("points", sa.Integer(), server_default="0", nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("is_optional", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["routine_id"], ["routines.id"]),
        sa.ForeignKeyConstraint(["child_profile_id"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_routine_tasks_routine_id_child_profile_id_position",
        "routine_tasks",
        ["routine_id", "child_profile_id", "position"],
    )

    op.create_table(
        "routine_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("routine_id", sa.Integer(), nullable=False),
        sa.Column("child_profile_id", sa.Integer(), nullable=False),
        sa.Column("session_date", sa.Date(), nullable=False),
        sa.Column("status", routine_session_status, nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("planned_end_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("points_awarded", sa.Integer(), server_default="0", nullable=False),
        sa.Column("bonus_multiplier", sa.Integer(), server_default="1", nullable=False),
        sa.Column("best_time_beaten", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("completion_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["routine_id"], ["routines.id"]),
        sa.ForeignKeyConstraint(["child_profile_id"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "routine_id",
            "child_profile_id",
            "session_date",
            name="uq_routine_sessions_routine_child_date",
        ),
    )
    op.create_index(
        "ix_routine_sessions_child_profile_id_session_date",
        "routine_sessions",
        ["child_profile_id", "session_date"],
    )

    op.create_table(
        "task_completions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("routine_session_id", sa.Integer(), nullable=False),
        sa.Column("routine_task_id", sa.Integer(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("points_awarded", sa.Integer(), nullable=False),
        sa.Column("duration_since_session_start_seconds", sa.Integer(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.ForeignKeyConstraint(["routine_session_id"], ["routine_sessions.id"]),
        sa.ForeignKeyConstraint(["routine_task_id"], ["routine_tasks.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("routine_session_id", "routine_task_id", name="uq_task_completions_session_task"),
    )

    op.create_table(
        "point_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("family_id", sa.Integer(), nullable=False),
        sa.Column("profile_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", point_transaction_type, nullable=False),
        sa.Column("points_delta", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("reference_table", sa.String(length=100), nullable=True),
        sa.Column("created_by_profile_id", sa.Integer(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["family_id"], ["families.id"]),
        sa.ForeignKeyConstraint(["profile_id"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["created_by_profile_id"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_point_transactions_family_id_profile_id",
        "point_transactions",
        ["family_id", "profile_id"],
    )
    op.create_index(
        "ix_point_transactions_family_id_created_at",
        "point_transactions",
        ["family_id", "created_at"],
    )

    op.create_table(
        "routine_performance_stats",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("child_profile_id", sa.Integer(), nullable=False),
        sa.Column("routine_id", sa.Integer(), nullable=False),
        sa.Column("best_duration_seconds", sa.Integer(), nullable=True),
        sa.Column("best_session_id", sa.Integer(), nullable=True),
        sa.Column("last_completed_session_id", sa.Integer(), nullable=True),
        sa.Column("last_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("streak_days", sa.Integer(), server_default="0", nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["child_profile_id"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["routine_id"], ["routines.id"]),
        sa.ForeignKeyConstraint(["best_session_id"], ["routine_sessions.id"]),
        sa.ForeignKeyConstraint(["last_completed_session_id"], ["routine_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("child_profile_id", "routine_id", name="uq_routine_performance_stats_child_routine"),
    )

    op.create_table(
        "achievements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("family_id", sa.Integer(), nullable=True),
        sa.Column("code", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("criteria", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column("icon_url", sa.String(length=500), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["family_id"], ["families.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("family_id", "code", name="uq_achievements_family_code"),
    )
    op.create_index(
        "uq_achievements_global_code",
        "achievements",
        ["code"],
        unique=True,
        postgresql_where=sa.text("family_id IS NULL"),
    )

    op.create_table(
        "user_achievements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("profile_id", sa.Integer(), nullable=False),
        sa.Column("achievement_id", sa.Integer(), nullable=False),
        sa.Column("awarded_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.ForeignKeyConstraint(["profile_id"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["achievement_id"], ["achievements.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("profile_id", "achievement_id", name="uq_user_achievements_profile_achievement"),
    )

    achievements_table = sa.table(
        "achievements",
        sa.column("code", sa.String),
        sa.column("name", sa.String),
        sa.column("description", sa.Text),
        sa.column("criteria", postgresql.JSONB),
    )
    op.bulk_insert(
        achievements_table,
        [
            {
                "code": "first_routine",
                "name": "First Routine",
                "description": "Finish a routine for the very first time.",
                "criteria": {"type": "routine_completed", "count": 1},
            },
            {
                "code": "speedster",
                "name": "Speedster",
                "description": "Beat your best time on a routine.",
                "criteria": {"type": "best_time_beaten"},
            },
            {
                "code": "streak_3",
                "name": "3 Day Streak",
                "description": "Complete the same routine three days in a row.",
                "criteria": {"type": "streak_days", "value": 3},
            },
            {
                "code": "streak_7",
                "name": "7 Day Streak",
                "description": "Complete the same routine seven days in a row.",
                "criteria": {"type": "streak_days", "value": 7},
            },
        ],
    )


def downgrade() -> None:
    op.drop_table("user_achievements")
    op.drop_index("uq_achievements_global_code", table_name="achievements")
    op.drop_table("achievements")
    op.drop_table("routine_performance_stats")
    op.drop_index("ix_point_transactions_family_id_created_at", table_name="point_transactions")
    op.drop_index("ix_point_transactions_family_id_profile_id", table_name="point_transactions")
    op.drop_table("point_transactions")
    op.drop_table("task_completions")
    op.drop_index("ix_routine_sessions_child_profile_id_session_date", table_name="routine_sessions")
    op.drop_table("routine_sessions")
    op.drop_index("ix_routine_tasks_routine_id_child_profile_id_position", table_name="routine_tasks")
    op.drop_table("routine_tasks")
    op.drop_table("routines")
    op.drop_index("ix_profiles_family_id", table_name="profiles")
    op.drop_table("profiles")
    op.drop_table("families")

    bind = op.get_bind()
    point_transaction_type.drop(bind, checkfirst=True)
    routine_session_status.drop(bind, checkfirst=True)
    profile_role.drop(bind, checkfirst=True)
