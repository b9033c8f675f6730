from datetime import datetime

from sqlalchemy import String, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base

ROLE_USER = "user"
ROLE_ADMIN = "admin"

# Subscription states that make a user eligible for weekly summaries
ACTIVE_SUBSCRIPTION_STATUSES: tuple[str, ...] = ("active",)


class User(Base):
    __tablename__ = "users"

    # Auth provider uid. Used verbatim inside batch custom ids, so it must not
    # contain underscores.
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    role: Mapped[str] = mapped_column(String(20), default=ROLE_USER)
    subscription_status: Mapped[str] = mapped_column(String(30), default="none", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN
