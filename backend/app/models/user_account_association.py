from sqlalchemy import ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db.base import Base


class UserAccountAssociation(Base):
    __tablename__ = "user_account_associations"
    __table_args__ = (
        UniqueConstraint("user_id", "account_id", name="uq_user_account_associations"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), nullable=False)
    depth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
