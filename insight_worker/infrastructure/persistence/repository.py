import asyncio
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Optional, TypeVar
import structlog

from sqlalchemy import select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from insight_worker.domain.errors import InvalidTransitionError, RecommendationNotFoundError
from insight_worker.domain.models import (
    Analysis, AnalysisSections, AnalysisWithRecommendations, ErrorKind, Priority,
    Recommendation, RecommendationResult, RecommendationStatus, ALLOWED_TRANSITIONS
)
from insight_worker.domain.ports import AnalysisRepository
from .schema import AnalysisRecord, Base, RecommendationRecord

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _source_status(target: RecommendationStatus) -> RecommendationStatus:
    for source, targets in ALLOWED_TRANSITIONS.items():
        if target in targets:
            return source
    raise ValueError(f"No transition leads to {target.value}")


def analysis_to_domain(record: AnalysisRecord) -> Analysis:
    return Analysis(
        id=record.id,
        agent_id=record.agent_id,
        created_at=record.created_at,
        sections=AnalysisSections.model_validate(record.sections),
        capabilities_used=list(record.capabilities_used or []),
        duration_ms=record.duration_ms,
    )


def recommendation_to_domain(record: RecommendationRecord) -> Recommendation:
    return Recommendation(
        id=record.id,
        analysis_id=record.analysis_id,
        capability_name=record.capability_name,
        owner_name=record.owner_name,
        priority=Priority.from_ordinal(record.priority),
        reasoning=record.reasoning,
        confidence=record.confidence,
        trigger_phrase=record.trigger_phrase,
        params=record.params,
        estimated_impact=record.estimated_impact,
        estimated_gas=record.estimated_gas,
        status=RecommendationStatus(record.status),
        decided_at=record.decided_at,
        executed_at=record.executed_at,
        result=RecommendationResult.model_validate(record.result) if record.result else None,
        error=record.error,
        error_kind=ErrorKind(record.error_kind) if record.error_kind else None,
        created_at=record.created_at,
    )


def recommendation_to_record(recommendation: Recommendation) -> RecommendationRecord:
    return RecommendationRecord(
        id=recommendation.id,
        analysis_id=recommendation.analysis_id,
        capability_name=recommendation.capability_name,
        owner_name=recommendation.owner_name,
        priority=recommendation.priority.ordinal,
        reasoning=recommendation.reasoning,
        confidence=recommendation.confidence,
        trigger_phrase=recommendation.trigger_phrase,
        params=recommendation.params,
        estimated_impact=recommendation.estimated_impact,
        estimated_gas=recommendation.estimated_gas,
        status=recommendation.status.value,
        decided_at=recommendation.decided_at,
        executed_at=recommendation.executed_at,
        result=recommendation.result.model_dump(mode="json") if recommendation.result else None,
        error=recommendation.error,
        error_kind=recommendation.error_kind.value if recommendation.error_kind else None,
        created_at=recommendation.created_at,
    )


def _is_complete(recommendation: Optional[Recommendation]) -> bool:
    return bool(
        recommendation is not None
        and recommendation.id
        and recommendation.capability_name
        and recommendation.trigger_phrase
    )


class SqlAlchemyAnalysisRepository(AnalysisRepository):
    """Analysis store over a synchronous SQLAlchemy engine, driven from worker threads"""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        self._lock = asyncio.Lock()

    async def _run(self, fn: Callable[[Session], T]) -> T:
        async with self._lock:
            work = asyncio.ensure_future(asyncio.to_thread(self._in_session, fn))
            try:
                return await asyncio.shield(work)
            finally:
                # a cancelled caller must not release the lock while the session thread still runs
                if not work.done():
                    await asyncio.wait([work])

    def _in_session(self, fn: Callable[[Session], T]) -> T:
        with self._session_factory() as session:
            return fn(session)

    async def create_schema(self) -> None:
        await asyncio.to_thread(Base.metadata.create_all, self.engine)
        logger.info("schema_ready", tables=sorted(Base.metadata.tables))

    def dispose(self) -> None:
        self.engine.dispose()

    # Analyses

    async def save_analysis(self, analysis: Analysis, recommendations: List[Recommendation]) -> None:
        """Analysis row and its recommendations in one transaction"""

        valid = [r for r in recommendations if _is_complete(r)]
        if len(valid) != len(recommendations):
            logger.warning(
                "incomplete_recommendations_skipped",
                analysis_id=analysis.id,
                skipped=len(recommendations) - len(valid)
            )

        def _save(session: Session) -> None:
            with session.begin():
                session.add(AnalysisRecord(
                    id=analysis.id,
                    agent_id=analysis.agent_id,
                    created_at=analysis.created_at,
                    sections=analysis.sections.model_dump(mode="json"),
                    capabilities_used=list(analysis.capabilities_used),
                    duration_ms=analysis.duration_ms,
                ))
                session.flush()
                session.add_all([recommendation_to_record(r) for r in valid])

        await self._run(_save)
        logger.info("analysis_saved", analysis_id=analysis.id, recommendations=len(valid))

    async def get_analysis(self, analysis_id: str) -> Optional[AnalysisWithRecommendations]:
        def _get(session: Session) -> Optional[AnalysisWithRecommendations]:
            record = session.get(AnalysisRecord, analysis_id)
            if record is None:
                return None
            analysis = analysis_to_domain(record)
            return AnalysisWithRecommendations(
                **analysis.model_dump(),
                recommendations=self._ordered_recommendations(session, analysis_id),
            )

        return await self._run(_get)

    async def list_analyses(self, agent_id: str, limit: int = 10) -> List[Analysis]:
        def _list(session: Session) -> List[Analysis]:
            stmt = (
                select(AnalysisRecord)
                .where(AnalysisRecord.agent_id == agent_id)
                .order_by(AnalysisRecord.created_at.desc())
                .limit(limit)
            )
            return [analysis_to_domain(r) for r in session.scalars(stmt)]

        return await self._run(_list)

    async def delete_analysis(self, analysis_id: str) -> bool:
        def _delete(session: Session) -> bool:
            with session.begin():
                record = session.get(AnalysisRecord, analysis_id)
                if record is None:
                    return False
                session.delete(record)
                return True

        deleted = await self._run(_delete)
        if deleted:
            logger.info("analysis_deleted", analysis_id=analysis_id)
        return deleted

    # Recommendations

    @staticmethod
    def _ordered_recommendations(session: Session, analysis_id: str) -> List[Recommendation]:
        stmt = (
            select(RecommendationRecord)
            .where(RecommendationRecord.analysis_id == analysis_id)
            .order_by(RecommendationRecord.priority.desc(), RecommendationRecord.confidence.desc())
        )
        return [recommendation_to_domain(r) for r in session.scalars(stmt)]

    async def list_recommendations(self, analysis_id: str) -> List[Recommendation]:
        return await self._run(partial(self._ordered_recommendations, analysis_id=analysis_id))

    async def get_recommendation(self, recommendation_id: str) -> Recommendation:
        def _get(session: Session) -> Recommendation:
            record = session.get(RecommendationRecord, recommendation_id)
            if record is None:
                raise RecommendationNotFoundError(recommendation_id)
            return recommendation_to_domain(record)

        return await self._run(_get)

    async def _transition(
        self,
        recommendation_id: str,
        target: RecommendationStatus,
        values: Dict[str, Any],
    ) -> Recommendation:
        """Compare-and-swap on the status column: only the allowed source status is updated"""

        source = _source_status(target)

        def _apply(session: Session) -> Recommendation:
            with session.begin():
                result = session.execute(
                    update(RecommendationRecord)
                    .where(
                        RecommendationRecord.id == recommendation_id,
                        RecommendationRecord.status == source.value,
                    )
                    .values(status=target.value, **values)
                )
                if result.rowcount == 0:
                    current = session.get(RecommendationRecord, recommendation_id)
                    if current is None:
                        raise RecommendationNotFoundError(recommendation_id)
                    raise InvalidTransitionError(recommendation_id, current.status, target.value)

            record = session.get(RecommendationRecord, recommendation_id, populate_existing=True)
            return recommendation_to_domain(record)

        return await self._run(_apply)

    async def mark_rejected(self, recommendation_id: str, decided_at: datetime) -> Recommendation:
        return await self._transition(
            recommendation_id, RecommendationStatus.REJECTED, {"decided_at": decided_at}
        )

    async def mark_executing(self, recommendation_id: str, decided_at: datetime) -> Recommendation:
        return await self._transition(
            recommendation_id, RecommendationStatus.EXECUTING, {"decided_at": decided_at}
        )

    async def mark_completed(
        self,
        recommendation_id: str,
        result: RecommendationResult,
        executed_at: datetime,
    ) -> Recommendation:
        return await self._transition(
            recommendation_id,
            RecommendationStatus.COMPLETED,
            {"result": result.model_dump(mode="json"), "error": None, "executed_at": executed_at},
        )

    async def mark_failed(
        self,
        recommendation_id: str,
        error: str,
        error_kind: ErrorKind,
        executed_at: datetime,
    ) -> Recommendation:
        return await self._transition(
            recommendation_id,
            RecommendationStatus.FAILED,
            {"error": error, "error_kind": error_kind.value, "executed_at": executed_at},
        )
