from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Float, Integer, DateTime, Text, func
from app.db import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="USER")  # ADMIN|USER|PHOTOGRAPHER
    tier: Mapped[str] = mapped_column(String(16), nullable=False, default="FREE")  # FREE|BASIC|PRO|STUDIO
    storage_used_mb: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    storage_limit_mb: Mapped[float] = mapped_column(Float, nullable=False, default=100.0)  # -1 = unlimited
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Studio branding
    studio_name: Mapped[str | None] = mapped_column(String(120))
    logo_url: Mapped[str | None] = mapped_column(Text())  # data URI or http(s) URL
    watermark_opacity: Mapped[float | None] = mapped_column(Float)
    watermark_size: Mapped[int | None] = mapped_column(Integer)
    watermark_position: Mapped[str | None] = mapped_column(String(16))
    watermark_offset_x: Mapped[int | None] = mapped_column(Integer)
    watermark_offset_y: Mapped[int | None] = mapped_column(Integer)
