from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.adoptrees.models import Base


class Tree(Base):
    __tablename__ = "trees"
    __table_args__ = (
        Index("idx_trees_type_active", "tree_type", "is_active"),
        Index("idx_trees_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Required
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    info: Mapped[str] = mapped_column(String(500), nullable=False)
    oxygen_kgs: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    tree_type: Mapped[str] = mapped_column(String(16), nullable=False, default="individual")  # individual, company
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Images
    image_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    image_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    small_image_urls: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    small_image_keys: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)

    # Packages (mostly sold to companies)
    package_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    package_price: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Species and impact ratings (0-10)
    scientific_species: Mapped[str | None] = mapped_column(String(200), nullable=True)
    species_info_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    co2: Mapped[float | None] = mapped_column(Float, nullable=True)
    food_security: Mapped[int | None] = mapped_column(Integer, nullable=True)
    economic_development: Mapped[int | None] = mapped_column(Integer, nullable=True)
    co2_absorption: Mapped[int | None] = mapped_column(Integer, nullable=True)
    environmental_protection: Mapped[int | None] = mapped_column(Integer, nullable=True)
    local_uses: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
