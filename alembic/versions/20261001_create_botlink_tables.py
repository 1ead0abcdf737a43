"""Create users, linked accounts, auth tokens and magic link attempts"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261001_create_botlink_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_id", "users", ["id"], unique=False)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "linked_accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("secondary_account_id", sa.BigInteger(), nullable=True),
        sa.Column("preferred_locale", sa.String(), nullable=False, server_default="pt-BR"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_linked_accounts_id", "linked_accounts", ["id"], unique=False)
    op.create_index("ix_linked_accounts_owner_id", "linked_accounts", ["owner_id"], unique=True)
    op.create_index(
        "ix_linked_accounts_secondary_account_id",
        "linked_accounts",
        ["secondary_account_id"],
        unique=True,
    )

    op.create_table(
        "auth_tokens",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("token", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_auth_tokens_token", "auth_tokens", ["token"], unique=True)
    op.create_index("ix_auth_tokens_user_id", "auth_tokens", ["user_id"], unique=False)
    op.create_index(
        "ix_auth_tokens_user_created",
        "auth_tokens",
        ["user_id", "created_at"],
        unique=False,
    )
    # At most one live (active, unused) token per owner.
    op.create_index(
        "uq_auth_tokens_live_owner",
        "auth_tokens",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("is_active AND used_at IS NULL"),
        sqlite_where=sa.text("is_active = 1 AND used_at IS NULL"),
    )

    op.create_table(
        "magic_link_attempts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("attempted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_magic_link_attempts_id", "magic_link_attempts", ["id"], unique=False)
    op.create_index(
        "ix_magic_link_attempts_attempted_at",
        "magic_link_attempts",
        ["attempted_at"],
        unique=False,
    )
    op.create_index(
        "ix_magic_link_attempts_email_recent",
        "magic_link_attempts",
        ["email", "attempted_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_magic_link_attempts_email_recent", table_name="magic_link_attempts")
    op.drop_index("ix_magic_link_attempts_attempted_at", table_name="magic_link_attempts")
    op.drop_index("ix_magic_link_attempts_id", table_name="magic_link_attempts")
    op.drop_table("magic_link_attempts")

    op.drop_index("uq_auth_tokens_live_owner", table_name="auth_tokens")
    op.drop_index("ix_auth_tokens_user_created", table_name="auth_tokens")
    op.drop_index("ix_auth_tokens_user_id", table_name="auth_tokens")
    op.drop_index("ix_auth_tokens_token", table_name="auth_tokens")
    op.drop_table("auth_tokens")

    op.drop_index("ix_linked_accounts_secondary_account_id", table_name="linked_accounts")
    op.drop_index("ix_linked_accounts_owner_id", table_name="linked_accounts")
    op.drop_index("ix_linked_accounts_id", table_name="linked_accounts")
    op.drop_table("linked_accounts")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_id", table_name="users")
    op.drop_table("users")
