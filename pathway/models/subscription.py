from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum, String

from .base import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String(36), nullable=False, unique=True)
    plan_type = Column(
        Enum("basic", "pro", "yearly", name="plan_type"),
        nullable=False,
        default="basic",
        server_default="basic",
    )
    stripe_customer_id = Column(String)
    stripe_subscription_id = Column(String)
    current_period_end = Column(DateTime(timezone=True))
    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


__all__ = ["Subscription"]
