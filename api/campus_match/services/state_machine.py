SCHEDULE_PENDING = "pending"
SCHEDULE_COMPLETED = "completed"
SCHEDULE_FAILED = "failed"
SCHEDULE_STATUSES = {SCHEDULE_PENDING, SCHEDULE_COMPLETED, SCHEDULE_FAILED}
SCHEDULE_TERMINAL = {SCHEDULE_COMPLETED, SCHEDULE_FAILED}

USER_FORM_COMPLETED = "form_completed"
USER_MATCHED = "matched"
USER_CONFIRMED = "confirmed"


def transition_schedule_status(current: str, outcome: str) -> str:
    if current not in SCHEDULE_STATUSES:
        raise ValueError(f"Unknown schedule status: {current}")

    if current in SCHEDULE_TERMINAL:
        return current

    if outcome == "succeeded":
        return SCHEDULE_COMPLETED
    if outcome == "failed":
        return SCHEDULE_FAILED
    return current


def is_due(status: str, scheduled_time, now) -> bool:
    return status == SCHEDULE_PENDING and scheduled_time <= now

