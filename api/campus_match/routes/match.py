from fastapi import APIRouter

from ..database import SessionLocal
from ..schemas import NextMatchTimeResponse
from ..services import scheduler

router = APIRouter()


@router.get("/next-match-time", response_model=NextMatchTimeResponse)
def next_match_time() -> NextMatchTimeResponse:
    with SessionLocal() as db:
        next_time = scheduler.get_next_scheduled_time(db)
    return NextMatchTimeResponse(next=next_time)
