import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder

from ..config import MATCHING_CONFIG
from ..database import SessionLocal
from ..deps import get_tag_index, require_admin
from ..errors import MatchingExecutionError, MatchingInProgressError, ScheduleError
from ..schemas import (
    ActionResponse,
    CreateScheduledMatchesRequest,
    FinalMatchOut,
    ScheduledFinalMatchOut,
    TriggerMatchingResponse,
)
from ..services import matching, scheduler
from ..tags import TagIndex

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


def _scheduled_out(row: dict[str, Any]) -> ScheduledFinalMatchOut:
    return ScheduledFinalMatchOut(**{**row, "id": str(row["id"])})


@router.post("/admin/matches/trigger-final", response_model=TriggerMatchingResponse)
def trigger_final_matching(dry_run: bool = False, tag_index: TagIndex = Depends(get_tag_index)) -> TriggerMatchingResponse:
    with SessionLocal() as db:
        try:
            result = matching.run_final_matching(db, tag_index, MATCHING_CONFIG, dry_run=dry_run)
        except MatchingInProgressError:
            raise HTTPException(status_code=409, detail="A final matching run is already in progress")
        except MatchingExecutionError:
            logger.exception("[ADMIN] Final matching failed")
            raise HTTPException(status_code=500, detail="Final matching failed")

    logger.info("[ADMIN] Final matching completed: %s pairs (dry_run=%s)", result.matches_created, dry_run)
    return TriggerMatchingResponse(
        success=True,
        message="Final matching dry run completed" if dry_run else "Final matching completed successfully",
        dry_run=dry_run,
        matches_created=result.matches_created,
        cleanup_completed=result.cleanup_completed,
        matches=[FinalMatchOut(**m.as_dict()) for m in result.matches],
    )


@router.post("/admin/matches/update-previews", response_model=ActionResponse)
def update_match_previews(tag_index: TagIndex = Depends(get_tag_index)) -> ActionResponse:
    with SessionLocal() as db:
        try:
            users_updated = matching.generate_match_previews(db, tag_index, MATCHING_CONFIG)
        except MatchingExecutionError:
            logger.exception("[ADMIN] Match preview update failed")
            raise HTTPException(status_code=500, detail="Match preview update failed")
    return ActionResponse(success=True, message="Match previews updated successfully", users_updated=users_updated)


@router.get("/admin/scheduled-matches")
def list_scheduled_matches() -> dict[str, Any]:
    with SessionLocal() as db:
        rows = scheduler.list_scheduled_matches(db)
    items = [_scheduled_out(r) for r in rows]
    return jsonable_encoder({"items": items, "count": len(items)})


@router.post("/admin/scheduled-matches")
def create_scheduled_matches(payload: CreateScheduledMatchesRequest) -> dict[str, Any]:
    with SessionLocal() as db:
        try:
            rows = scheduler.create_scheduled_matches(db, payload.scheduled_times)
        except ScheduleError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
    items = [_scheduled_out(r) for r in rows]
    return jsonable_encoder({"success": True, "items": items})


@router.delete("/admin/scheduled-matches/{scheduled_id}", response_model=ActionResponse)
def cancel_scheduled_match(scheduled_id: str) -> ActionResponse:
    try:
        scheduled_id = str(uuid.UUID(scheduled_id))
    except ValueError:
        raise HTTPException(status_code=404, detail="Scheduled match not found")
    with SessionLocal() as db:
        deleted = scheduler.cancel_scheduled_match(db, scheduled_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Scheduled match not found or already executed")
    return ActionResponse(success=True, message="Scheduled match cancelled")
