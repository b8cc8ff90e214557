from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db.base import Base
from backend.app.models.enums import IdentityState

MAX_IDENTIFIER_LENGTH = 100


class Identity(Base):
    __tablename__ = "identities"
    __table_args__ = (
        UniqueConstraint("account_id", "sis_identifier", name="uq_identities_account_sis"),
        UniqueConstraint(
            "account_id", "integration_identifier", name="uq_identities_account_integration"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    identifier: Mapped[str] = mapped_column(String(MAX_IDENTIFIER_LENGTH), nullable=False)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    authentication_provider_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("authentication_providers.id")
    )
    hashed_secret: Mapped[str | None] = mapped_column(Text)
    legacy_hash: Mapped[str | None] = mapped_column(Text)
    password_auto_generated: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    state: Mapped[IdentityState] = mapped_column(
        Enum(IdentityState, name="identity_state"),
        nullable=False,
        default=IdentityState.active,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    sis_identifier: Mapped[str | None] = mapped_column(Text)
    integration_identifier: Mapped[str | None] = mapped_column(Text)
    communication_channel_id: Mapped[int | None] = mapped_column(Integer)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    login_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_request_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_login_ip: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @property
    def is_deleted(self) -> bool:
        return self.state == IdentityState.deleted


Index(
    "uq_identities_active_identifier",
    Identity.account_id,
    func.lower(Identity.identifier),
    func.coalesce(Identity.authentication_provider_id, 0),
    unique=True,
    postgresql_where=text("state = 'active'"),
    sqlite_where=text("state = 'active'"),
)
Index("ix_identities_user_id", Identity.user_id)
