from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db.base import Base


class LoginAuditRecord(Base):
    __tablename__ = "login_audit_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    identity_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("identities.id"), nullable=False
    )
    remote_address: Mapped[str | None] = mapped_column(Text)
    succeeded: Mapped[bool] = mapped_column(Boolean, nullable=False)
    blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


Index("ix_login_audit_records_identity_id", LoginAuditRecord.identity_id)
Index("ix_login_audit_records_created_at", LoginAuditRecord.created_at)
