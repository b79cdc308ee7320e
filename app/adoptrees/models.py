from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class User(Base):
    """
    Customers (individual/company), admins and well-wishers share one table;
    `role` decides which portal they can use.
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_role", "role"),
        Index("idx_users_user_type", "user_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    gst_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_of_birth_last_updated: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    user_type: Mapped[str] = mapped_column(String(16), nullable=False, default="individual")  # individual, company
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user")  # user, admin, wellwisher

    public_id: Mapped[str | None] = mapped_column(String(16), nullable=True, unique=True)
    qr_code: Mapped[str | None] = mapped_column(Text, nullable=True)  # PNG data URL
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    image_key: Mapped[str | None] = mapped_column(String(512), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    @property
    def display_name(self) -> str:
        if self.user_type == "company" and self.company_name:
            return self.company_name
        return self.name or self.company_name or self.email


class AuditEvent(Base):
    """
    Append-only audit trail event.
    """

    __tablename__ = "audit_events"
    __table_args__ = (Index("idx_audit_events_entity", "entity_type", "entity_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "order.paid"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Order"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.adoptrees.modules.catalog.models import Tree  # noqa: E402,F401
from app.adoptrees.modules.coupons.models import Coupon  # noqa: E402,F401
from app.adoptrees.modules.orders.models import Order, OrderItem  # noqa: E402,F401
from app.adoptrees.modules.wellwisher.models import GrowthUpdate, TaskImage, WellwisherTask  # noqa: E402,F401
from app.adoptrees.modules.payments.models import ProcessedWebhook  # noqa: E402,F401
