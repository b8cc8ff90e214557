"""init

Revision ID: 0001_init
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    identity_state = postgresql.ENUM(
        "active", "deleted", name="identity_state", create_type=False
    )
    user_state = postgresql.ENUM(
        "creation_pending",
        "pre_registered",
        "registered",
        "deleted",
        name="user_state",
        create_type=False,
    )
    provider_state = postgresql.ENUM(
        "active", "deleted", name="provider_state", create_type=False
    )
    auth_type = postgresql.ENUM(
        "canvas", "ldap", "cas", "saml", "openid_connect", name="auth_type", create_type=False
    )
    channel_state = postgresql.ENUM(
        "unconfirmed", "active", "retired", name="channel_state", create_type=False
    )

    for enum in (identity_state, user_state, provider_state, auth_type, channel_state):
        enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("parent_account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=True),
        sa.Column("shard_id", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_site_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "email_identifiers_required",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column(
            "persist_inferred_providers",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column(
            "admins_can_change_passwords",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("default_time_zone", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_accounts_shard_id", "accounts", ["shard_id"])

    op.create_table(
        "authentication_providers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("auth_type", auth_type, nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("state", provider_state, nullable=False, server_default="active"),
        sa.Column("ldap_host", sa.Text(), nullable=True),
        sa.Column("ldap_port", sa.Integer(), nullable=True),
        sa.Column("ldap_use_tls", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("ldap_base_dn", sa.Text(), nullable=True),
        sa.Column("ldap_filter", sa.Text(), nullable=True),
        sa.Column("ldap_bind_dn", sa.Text(), nullable=True),
        sa.Column("ldap_bind_password", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_authentication_providers_account_id", "authentication_providers", ["account_id"]
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("state", user_state, nullable=False, server_default="pre_registered"),
        sa.Column("time_zone", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "identities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("identifier", sa.String(length=100), nullable=False),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "authentication_provider_id",
            sa.Integer(),
            sa.ForeignKey("authentication_providers.id"),
            nullable=True,
        ),
        sa.Column("hashed_secret", sa.Text(), nullable=True),
        sa.Column("legacy_hash", sa.Text(), nullable=True),
        sa.Column(
            "password_auto_generated",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("state", identity_state, nullable=False, server_default="active"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sis_identifier", sa.Text(), nullable=True),
        sa.Column("integration_identifier", sa.Text(), nullable=True),
        sa.Column("communication_channel_id", sa.Integer(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("login_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_request_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login_ip", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("account_id", "sis_identifier", name="uq_identities_account_sis"),
        sa.UniqueConstraint(
            "account_id", "integration_identifier", name="uq_identities_account_integration"
        ),
    )
    op.create_index(
        "uq_identities_active_identifier",
        "identities",
        [
            sa.text("account_id"),
            sa.text("lower(identifier)"),
            sa.text("coalesce(authentication_provider_id, 0)"),
        ],
        unique=True,
        postgresql_where=sa.text("state = 'active'"),
    )
    op.create_index("ix_identities_user_id", "identities", ["user_id"])

    op.create_table(
        "communication_channels",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("identity_id", sa.Integer(), sa.ForeignKey("identities.id"), nullable=True),
        sa.Column("path", sa.Text(), nullable=False),
        sa.Column("path_type", sa.String(length=16), nullable=False, server_default="email"),
        sa.Column("state", channel_state, nullable=False, server_default="unconfirmed"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_communication_channels_user_id", "communication_channels", ["user_id"]
    )
    op.create_index(
        "ix_communication_channels_identity_id", "communication_channels", ["identity_id"]
    )

    op.create_table(
        "user_account_associations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("depth", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("user_id", "account_id", name="uq_user_account_associations"),
    )

    op.create_table(
        "login_audit_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("identity_id", sa.Integer(), sa.ForeignKey("identities.id"), nullable=False),
        sa.Column("remote_address", sa.Text(), nullable=True),
        sa.Column("succeeded", sa.Boolean(), nullable=False),
        sa.Column("blocked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_login_audit_records_identity_id", "login_audit_records", ["identity_id"]
    )
    op.create_index(
        "ix_login_audit_records_created_at", "login_audit_records", ["created_at"]
    )


def downgrade() -> None:
    op.drop_table("login_audit_records")
    op.drop_table("user_account_associations")
    op.drop_table("communication_channels")
    op.drop_index("uq_identities_active_identifier", table_name="identities")
    op.drop_table("identities")
    op.drop_table("users")
    op.drop_table("authentication_providers")
    op.drop_table("accounts")
    for name in ("channel_state", "auth_type", "provider_state", "user_state", "identity_state"):
        postgresql.ENUM(name=name).drop(op.get_bind(), checkfirst=True)
