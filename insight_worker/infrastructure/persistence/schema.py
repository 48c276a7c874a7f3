"""SQLAlchemy models for analyses and recommended actions"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.pool import StaticPool

from insight_worker.domain.models import RecommendationStatus, utcnow


class Base(DeclarativeBase):
    pass


class AnalysisRecord(Base):
    """One analysis run and its four-section narrative"""

    __tablename__ = "analysis_results"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    sections: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    capabilities_used: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    recommendations: Mapped[List["RecommendationRecord"]] = relationship(
        back_populates="analysis",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_analysis_results_created_at", "created_at"),
    )


class RecommendationRecord(Base):
    """Recommended action; priority stored as ordinal (high=3, medium=2, low=1)"""

    __tablename__ = "recommended_actions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    analysis_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("analysis_results.id", ondelete="CASCADE"), nullable=False
    )
    capability_name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_name: Mapped[str] = mapped_column(String(255), nullable=False, default="unknown")
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False, default="")
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    trigger_phrase: Mapped[str] = mapped_column(Text, nullable=False)
    params: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    estimated_impact: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    estimated_gas: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RecommendationStatus.PENDING.value
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    executed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    result: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_kind: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    analysis: Mapped[AnalysisRecord] = relationship(back_populates="recommendations")

    __table_args__ = (
        Index("idx_recommended_actions_analysis_id", "analysis_id"),
        Index("idx_recommended_actions_status", "status"),
        Index("idx_recommended_actions_created_at", "created_at"),
    )


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """Engine with SQLite foreign keys enabled; in-memory SQLite shares one connection"""

    kwargs: Dict[str, Any] = {"echo": echo}
    is_sqlite = url.startswith("sqlite")

    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine
