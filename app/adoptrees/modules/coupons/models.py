from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.adoptrees.models import Base


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        Index("idx_coupons_category_active", "category", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)  # uppercase A-Z0-9
    category: Mapped[str] = mapped_column(String(16), nullable=False)  # individual, company
    discount_percentage: Mapped[float] = mapped_column(Float, nullable=False)

    usage_limit_type: Mapped[str] = mapped_column(String(16), nullable=False, default="unlimited")  # unlimited, custom
    total_usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    per_user_usage_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
