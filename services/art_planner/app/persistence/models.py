"""SQLAlchemy models for persisted planning runs."""
from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class PlanStatus(enum.Enum):
    ready = "Ready"
    needs_attention = "NeedsAttention"
    optimized = "Optimized"


class PlanRun(Base):
    __tablename__ = "plan_run"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    program_increment_id: Mapped[str] = mapped_column(String, nullable=False)
    program_increment_name: Mapped[str] = mapped_column(String, nullable=False)
    start_date: Mapped[date] = mapped_column(nullable=False)
    end_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[PlanStatus] = mapped_column(Enum(PlanStatus), nullable=False)
    readiness_score: Mapped[float] = mapped_column(Numeric(5, 4), nullable=False)
    is_ready: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    allocated_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unallocated_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wall_time_ms: Mapped[int | None] = mapped_column(Integer)
    params: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    report: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    rerun_of: Mapped[str | None] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)

    allocations: Mapped[list["PlanAllocation"]] = relationship(back_populates="run", cascade="all, delete-orphan")
    unallocated: Mapped[list["PlanUnallocated"]] = relationship(back_populates="run", cascade="all, delete-orphan")


class PlanAllocation(Base):
    __tablename__ = "plan_allocation"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    run_id: Mapped[str] = mapped_column(ForeignKey("plan_run.id"), nullable=False)
    work_item_id: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    team_id: Mapped[str] = mapped_column(String, nullable=False)
    iteration_id: Mapped[str] = mapped_column(String, nullable=False)
    iteration_index: Mapped[int] = mapped_column(Integer, nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    confidence: Mapped[float] = mapped_column(Numeric(5, 4), nullable=False)
    rationale: Mapped[str | None] = mapped_column(Text)

    run: Mapped[PlanRun] = relationship(back_populates="allocations")


class PlanUnallocated(Base):
    __tablename__ = "plan_unallocated"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    run_id: Mapped[str] = mapped_column(ForeignKey("plan_run.id"), nullable=False)
    work_item_id: Mapped[str] = mapped_column(String, nullable=False)
    reason: Mapped[str] = mapped_column(String, nullable=False)
    blockers: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    solutions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    run: Mapped[PlanRun] = relationship(back_populates="unallocated")


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    principal: Mapped[str] = mapped_column(String, nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    old_val: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    new_val: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    correlation_id: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)


__all__ = ["AuditLog", "Base", "PlanAllocation", "PlanRun", "PlanStatus", "PlanUnallocated"]
