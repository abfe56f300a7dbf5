from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class FinalMatchOut(BaseModel):
    id: Optional[str] = None
    user_a_id: str
    user_b_id: str
    score: float


class TriggerMatchingResponse(BaseModel):
    success: bool
    message: str
    dry_run: bool = False
    matches_created: int
    cleanup_completed: bool = True
    matches: list[FinalMatchOut] = Field(default_factory=list)


class ActionResponse(BaseModel):
    success: bool
    message: str
    users_updated: Optional[int] = None


class CreateScheduledMatchesRequest(BaseModel):
    scheduled_times: list[datetime] = Field(min_length=1)


class ScheduledFinalMatchOut(BaseModel):
    id: str
    scheduled_time: datetime
    status: str
    created_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None
    matches_created: Optional[int] = None
    error_message: Optional[str] = None


class NextMatchTimeResponse(BaseModel):
    next: Optional[datetime] = None
