from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.adoptrees.models import Base

if TYPE_CHECKING:
    from app.adoptrees.modules.orders.models import Order


class WellwisherTask(Base):
    """One planting job per order item, tracked from scheduling through growth updates."""

    __tablename__ = "wellwisher_tasks"
    __table_args__ = (
        Index("idx_ww_tasks_order", "order_id"),
        Index("idx_ww_tasks_status_due", "status", "next_growth_update_due"),
        Index("idx_ww_tasks_status_completed", "status", "completed_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    task_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)  # "<order_id>-<index>"

    task: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    scheduled_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    priority: Mapped[str] = mapped_column(String(8), nullable=False, default="medium")  # low, medium, high
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending, in_progress, completed, updating
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="To be determined")

    # Planting evidence
    planted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_altitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_altitude_accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_heading: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_speed: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    location_permission_state: Mapped[str | None] = mapped_column(String(32), nullable=True)
    location_client_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    planting_notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    next_growth_update_due: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    order: Mapped["Order"] = relationship("Order", back_populates="tasks")
    all_images: Mapped[list["TaskImage"]] = relationship(
        "TaskImage",
        foreign_keys="TaskImage.task_id",
        cascade="all, delete-orphan",
        order_by="TaskImage.id",
        lazy="selectin",
    )
    growth_updates: Mapped[list["GrowthUpdate"]] = relationship(
        "GrowthUpdate",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="GrowthUpdate.uploaded_at",
        lazy="selectin",
    )

    @property
    def planting_images(self) -> list["TaskImage"]:
        return [i for i in self.all_images if i.growth_update is None and i.growth_update_id is None]

    @property
    def last_activity_at(self) -> datetime | None:
        if self.growth_updates:
            return max(u.uploaded_at for u in self.growth_updates)
        return self.completed_at


class GrowthUpdate(Base):
    __tablename__ = "growth_updates"
    __table_args__ = (Index("idx_growth_updates_task", "task_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    task_id: Mapped[int] = mapped_column(ForeignKey("wellwisher_tasks.id", ondelete="CASCADE"), nullable=False)
    update_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    days_since_planting: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    task: Mapped[WellwisherTask] = relationship("WellwisherTask", back_populates="growth_updates")
    images: Mapped[list["TaskImage"]] = relationship(
        "TaskImage",
        back_populates="growth_update",
        order_by="TaskImage.id",
        lazy="selectin",
    )


class TaskImage(Base):
    """Planting photos (growth_update_id is NULL) and growth-update photos share this table."""

    __tablename__ = "task_images"
    __table_args__ = (Index("idx_task_images_task", "task_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    task_id: Mapped[int] = mapped_column(ForeignKey("wellwisher_tasks.id", ondelete="CASCADE"), nullable=False)
    growth_update_id: Mapped[int | None] = mapped_column(ForeignKey("growth_updates.id", ondelete="CASCADE"), nullable=True)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    caption: Mapped[str | None] = mapped_column(String(255), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    growth_update: Mapped[GrowthUpdate | None] = relationship("GrowthUpdate", back_populates="images", lazy="joined")
