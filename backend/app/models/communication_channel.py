from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db.base import Base
from backend.app.models.enums import ChannelState


class CommunicationChannel(Base):
    __tablename__ = "communication_channels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    identity_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("identities.id"))
    path: Mapped[str] = mapped_column(Text, nullable=False)
    path_type: Mapped[str] = mapped_column(String(16), nullable=False, default="email")
    state: Mapped[ChannelState] = mapped_column(
        Enum(ChannelState, name="channel_state"),
        nullable=False,
        default=ChannelState.unconfirmed,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


Index("ix_communication_channels_user_id", CommunicationChannel.user_id)
Index("ix_communication_channels_identity_id", CommunicationChannel.identity_id)
