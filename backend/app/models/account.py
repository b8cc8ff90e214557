from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db.base import Base


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    parent_account_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("accounts.id"))
    shard_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_site_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_identifiers_required: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    persist_inferred_providers: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    admins_can_change_passwords: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    default_time_zone: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @property
    def is_root_account(self) -> bool:
        return self.parent_account_id is None


Index("ix_accounts_shard_id", Account.shard_id)
