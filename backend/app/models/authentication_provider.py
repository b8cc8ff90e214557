from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db.base import Base
from backend.app.models.enums import AuthType, ProviderState


class AuthenticationProvider(Base):
    __tablename__ = "authentication_providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), nullable=False)
    auth_type: Mapped[AuthType] = mapped_column(
        Enum(AuthType, name="auth_type"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    state: Mapped[ProviderState] = mapped_column(
        Enum(ProviderState, name="provider_state"),
        nullable=False,
        default=ProviderState.active,
    )
    ldap_host: Mapped[str | None] = mapped_column(Text)
    ldap_port: Mapped[int | None] = mapped_column(Integer)
    ldap_use_tls: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ldap_base_dn: Mapped[str | None] = mapped_column(Text)
    ldap_filter: Mapped[str | None] = mapped_column(Text)
    ldap_bind_dn: Mapped[str | None] = mapped_column(Text)
    ldap_bind_password: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @property
    def is_active(self) -> bool:
        return self.state == ProviderState.active


Index("ix_authentication_providers_account_id", AuthenticationProvider.account_id)
