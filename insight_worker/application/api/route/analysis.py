from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse
import structlog

from insight_worker.application.api.schema import ApiError, ok
from insight_worker.application.container import WorkerContainer
from insight_worker.domain.decision.decision_processor import parse_decisions
from insight_worker.domain.errors import InvalidDecisionError, RecommendationNotFoundError

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_container(request: Request) -> WorkerContainer:
    return request.app.state.container


def parse_limit(raw: Optional[str], default: int, maximum: int) -> int:
    """Positive integer, clamped to ``maximum``; anything else is INVALID_LIMIT"""

    if raw is None or raw == "":
        return default
    try:
        limit = int(raw)
    except ValueError:
        raise ApiError(400, "INVALID_LIMIT", "limit must be a positive integer")
    if limit < 1:
        raise ApiError(400, "INVALID_LIMIT", "limit must be a positive integer")
    return min(limit, maximum)


# List analyses for the worker's agent
@router.get("/analysis")
async def list_analyses(request: Request, limit: Optional[str] = None):
    container = get_container(request)
    limit_value = parse_limit(limit, container.settings.default_list_limit, container.settings.max_list_limit)

    try:
        analyses = await container.repository.list_analyses(container.agent_id, limit_value)
    except Exception as e:
        logger.error("list_analyses_failed", error=str(e))
        raise ApiError(500, "ANALYSIS_ERROR", "Failed to get analyses", str(e))

    return ok({
        "analyses": [a.to_api() for a in analyses],
        "count": len(analyses),
        "limit": limit_value,
    })


@router.get("/analysis/{analysis_id}")
async def get_analysis(request: Request, analysis_id: str):
    container = get_container(request)

    try:
        analysis = await container.repository.get_analysis(analysis_id)
    except Exception as e:
        logger.error("get_analysis_failed", analysis_id=analysis_id, error=str(e))
        raise ApiError(500, "ANALYSIS_ERROR", "Failed to get analysis", str(e))

    if analysis is None:
        raise ApiError(404, "NOT_FOUND", f"Analysis {analysis_id} not found")

    return ok({"analysis": analysis.to_api()})


# Start a run; it completes and persists in the background
@router.post("/analysis", status_code=202)
async def run_analysis(request: Request):
    container = get_container(request)

    try:
        analysis_id = container.orchestrator.start_analysis(container.agent_id)
    except Exception as e:
        logger.error("start_analysis_failed", error=str(e))
        raise ApiError(500, "ANALYSIS_ERROR", "Failed to start analysis", str(e))

    return JSONResponse(
        status_code=202,
        content=ok({
            "message": "Analysis started",
            "analysisId": analysis_id,
            "status": "processing",
        })
    )


@router.get("/analysis/{analysis_id}/actions")
async def list_actions(request: Request, analysis_id: str):
    container = get_container(request)

    try:
        actions = await container.repository.list_recommendations(analysis_id)
    except Exception as e:
        logger.error("list_actions_failed", analysis_id=analysis_id, error=str(e))
        raise ApiError(500, "RETRIEVAL_ERROR", "Failed to get actions", str(e))

    return ok({"actions": [a.to_api() for a in actions], "count": len(actions)})


@router.get("/action/{action_id}")
async def get_action(request: Request, action_id: str):
    container = get_container(request)

    try:
        action = await container.repository.get_recommendation(action_id)
    except RecommendationNotFoundError:
        raise ApiError(404, "ACTION_NOT_FOUND", "Action not found")
    except Exception as e:
        logger.error("get_action_failed", action_id=action_id, error=str(e))
        raise ApiError(500, "RETRIEVAL_ERROR", "Failed to get action", str(e))

    return ok({"action": action.to_api()})


@router.post("/actions/decide")
async def decide_actions(request: Request, payload: Any = Body(None)):
    container = get_container(request)

    raw = payload.get("decisions") if isinstance(payload, dict) else None
    if not isinstance(raw, list) or not raw:
        raise ApiError(400, "INVALID_REQUEST", "decisions must be a non-empty array")

    for entry in raw:
        if not isinstance(entry, dict) or not isinstance(entry.get("actionId"), str) or not entry["actionId"]:
            raise ApiError(400, "INVALID_REQUEST", "Each decision must have a valid actionId")

    try:
        decisions = parse_decisions(raw)
    except InvalidDecisionError as e:
        raise ApiError(400, "INVALID_DECISION", str(e))

    try:
        outcome = await container.decisions.process(decisions)
    except Exception as e:
        logger.error("decide_actions_failed", error=str(e))
        raise ApiError(500, "DECISION_ERROR", "Failed to process decisions", str(e))

    body: Dict[str, Any] = {"processed": len(decisions)}
    body.update(outcome.to_api())
    return ok(body)
