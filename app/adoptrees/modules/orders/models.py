from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.adoptrees.models import Base, User

if TYPE_CHECKING:
    from app.adoptrees.modules.wellwisher.models import WellwisherTask


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("idx_orders_user_created", "user_id", "created_at"),
        Index("idx_orders_status", "status"),
        Index("idx_orders_payment_status", "payment_status"),
        Index("idx_orders_wellwisher", "assigned_wellwisher_id"),
        Index("idx_orders_payment_id", "payment_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)  # e.g. "JOH12345"

    # Buyer snapshot
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    user_email: Mapped[str] = mapped_column(String(320), nullable=False)
    user_name: Mapped[str] = mapped_column(String(200), nullable=False)
    user_type: Mapped[str] = mapped_column(String(16), nullable=False, default="individual")

    # Amounts
    total_amount: Mapped[float] = mapped_column(Float, nullable=False)
    coupon_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    discount_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    final_amount: Mapped[float] = mapped_column(Float, nullable=False)
    coupon_consumed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    payment_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    razorpay_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)

    # Gift
    is_gift: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    gift_recipient_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    gift_recipient_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    gift_message: Mapped[str | None] = mapped_column(String(500), nullable=True)

    assigned_wellwisher_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    certificate_pdf: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )
    tasks: Mapped[list["WellwisherTask"]] = relationship(
        "WellwisherTask",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="WellwisherTask.position",
        lazy="selectin",
    )
    user: Mapped[User | None] = relationship(User, foreign_keys=[user_id], lazy="selectin")
    assigned_wellwisher: Mapped[User | None] = relationship(User, foreign_keys=[assigned_wellwisher_id], lazy="selectin")

    @property
    def tree_count(self) -> int:
        return sum(i.quantity for i in self.items)

    @property
    def oxygen_total(self) -> float:
        return sum(i.quantity * (i.oxygen_kgs or 0) for i in self.items)


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (Index("idx_order_items_order", "order_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Tree snapshot at purchase time
    tree_id: Mapped[int | None] = mapped_column(ForeignKey("trees.id", ondelete="SET NULL"), nullable=True)
    tree_name: Mapped[str] = mapped_column(String(100), nullable=False)
    tree_image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    oxygen_kgs: Mapped[float] = mapped_column(Float, nullable=False, default=0)

    adoption_type: Mapped[str] = mapped_column(String(8), nullable=False, default="self")  # self, gift
    recipient_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    recipient_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    gift_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    order: Mapped[Order] = relationship("Order", back_populates="items")
