from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import text

from .forms import UserForm, canonical_pair
from .services.state_machine import SCHEDULE_PENDING, USER_CONFIRMED, USER_FORM_COMPLETED, USER_MATCHED

FORM_SCOPES = {"unmatched", "all"}

_FORM_COLUMNS = """
    f.user_id, f.gender, f.familiar_tags, f.aspirational_tags, f.recent_topics,
    f.self_traits, f.ideal_traits, f.physical_boundary, f.self_intro
"""

_SCHEDULED_COLUMNS = "id, scheduled_time, status, created_at, executed_at, matches_created, error_message"


def fetch_forms(db, scope: str = "unmatched") -> list[UserForm]:
    if scope not in FORM_SCOPES:
        raise ValueError(f"Unknown form scope: {scope}")
    if scope == "unmatched":
        sql = f"""
            SELECT {_FORM_COLUMNS}
            FROM forms f
            JOIN users u ON u.id = f.user_id
            WHERE u.status = :status
            ORDER BY f.created_at, f.user_id
            """
        params = {"status": USER_FORM_COMPLETED}
    else:
        sql = f"""
            SELECT {_FORM_COLUMNS}
            FROM forms f
            ORDER BY f.created_at, f.user_id
            """
        params = {}
    rows = db.execute(text(sql), params).mappings().all()
    return [UserForm.from_row(dict(r)) for r in rows]


def fetch_vetoes(db) -> list[tuple[str, str]]:
    rows = db.execute(text("SELECT vetoer_id, vetoed_id FROM vetoes")).mappings().all()
    return [(str(r["vetoer_id"]), str(r["vetoed_id"])) for r in rows]


def persist_final_match(db, user_a: str, user_b: str, score: float) -> str:
    first, second = canonical_pair(user_a, user_b)
    row = db.execute(
        text(
            """
            INSERT INTO final_matches (user_a_id, user_b_id, score)
            VALUES (CAST(:user_a_id AS uuid), CAST(:user_b_id AS uuid), :score)
            RETURNING id
            """
        ),
        {"user_a_id": first, "user_b_id": second, "score": score},
    ).mappings().first()
    return str(row["id"])


def set_user_status(db, user_id: str, status: str) -> None:
    db.execute(
        text("UPDATE users SET status = :status WHERE id = CAST(:user_id AS uuid)"),
        {"status": status, "user_id": user_id},
    )


def upsert_preview(db, user_id: str, candidate_ids: Sequence[str], scores: Sequence[float]) -> None:
    db.execute(
        text(
            """
            INSERT INTO match_previews (user_id, candidate_ids, scores)
            VALUES (CAST(:user_id AS uuid), CAST(:candidate_ids AS uuid[]), :scores)
            ON CONFLICT (user_id)
            DO UPDATE SET candidate_ids = EXCLUDED.candidate_ids,
                          scores = EXCLUDED.scores,
                          updated_at = NOW()
            """
        ),
        {"user_id": user_id, "candidate_ids": list(candidate_ids), "scores": list(scores)},
    )


def clear_vetoes(db) -> int:
    res = db.execute(text("DELETE FROM vetoes"))
    return int(res.rowcount or 0)


def clear_previews(db) -> int:
    res = db.execute(text("DELETE FROM match_previews"))
    return int(res.rowcount or 0)


def insert_scheduled_match(db, scheduled_time: datetime) -> dict[str, Any]:
    row = db.execute(
        text(
            f"""
            INSERT INTO scheduled_final_matches (scheduled_time, status)
            VALUES (:scheduled_time, :status)
            ON CONFLICT (scheduled_time)
            DO UPDATE SET scheduled_time = EXCLUDED.scheduled_time
            RETURNING {_SCHEDULED_COLUMNS}
            """
        ),
        {"scheduled_time": scheduled_time, "status": SCHEDULE_PENDING},
    ).mappings().first()
    return dict(row)


def list_scheduled_matches(db) -> list[dict[str, Any]]:
    rows = db.execute(
        text(f"SELECT {_SCHEDULED_COLUMNS} FROM scheduled_final_matches ORDER BY scheduled_time ASC")
    ).mappings().all()
    return [dict(r) for r in rows]


def delete_pending_scheduled_match(db, scheduled_id: str) -> bool:
    res = db.execute(
        text("DELETE FROM scheduled_final_matches WHERE id = CAST(:id AS uuid) AND status = :status"),
        {"id": scheduled_id, "status": SCHEDULE_PENDING},
    )
    return int(res.rowcount or 0) > 0


def next_pending_scheduled_time(db, now: datetime) -> datetime | None:
    row = db.execute(
        text(
            """
            SELECT scheduled_time
            FROM scheduled_final_matches
            WHERE status = :status AND scheduled_time > :now
            ORDER BY scheduled_time ASC
            LIMIT 1
            """
        ),
        {"status": SCHEDULE_PENDING, "now": now},
    ).mappings().first()
    return row["scheduled_time"] if row else None


def fetch_due_scheduled_matches(db, now: datetime) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            f"""
            SELECT {_SCHEDULED_COLUMNS}
            FROM scheduled_final_matches
            WHERE status = :status AND scheduled_time <= :now
            ORDER BY scheduled_time ASC
            """
        ),
        {"status": SCHEDULE_PENDING, "now": now},
    ).mappings().all()
    return [dict(r) for r in rows]


def mark_scheduled_executing(db, scheduled_id: str, executed_at: datetime) -> bool:
    res = db.execute(
        text(
            """
            UPDATE scheduled_final_matches
            SET executed_at = :executed_at
            WHERE id = CAST(:id AS uuid) AND status = :status
            """
        ),
        {"id": scheduled_id, "executed_at": executed_at, "status": SCHEDULE_PENDING},
    )
    return int(res.rowcount or 0) > 0


def finish_scheduled_match(
    db,
    scheduled_id: str,
    status: str,
    matches_created: int | None = None,
    error_message: str | None = None,
) -> bool:
    res = db.execute(
        text(
            """
            UPDATE scheduled_final_matches
            SET status = :status, matches_created = :matches_created, error_message = :error_message
            WHERE id = CAST(:id AS uuid) AND status = :pending
            """
        ),
        {
            "id": scheduled_id,
            "status": status,
            "matches_created": matches_created,
            "error_message": error_message,
            "pending": SCHEDULE_PENDING,
        },
    )
    return int(res.rowcount or 0) > 0


def fetch_expired_final_matches(db, cutoff: datetime) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            """
            SELECT fm.id, fm.user_a_id, fm.user_b_id
            FROM final_matches fm
            JOIN users ua ON fm.user_a_id = ua.id
            JOIN users ub ON fm.user_b_id = ub.id
            WHERE fm.created_at <= :cutoff
              AND (ua.status = :matched OR ub.status = :matched)
            ORDER BY fm.created_at ASC
            """
        ),
        {"cutoff": cutoff, "matched": USER_MATCHED},
    ).mappings().all()
    return [{"id": str(r["id"]), "user_a_id": str(r["user_a_id"]), "user_b_id": str(r["user_b_id"])} for r in rows]


def confirm_if_matched(db, user_id: str) -> int:
    res = db.execute(
        text("UPDATE users SET status = :confirmed WHERE id = CAST(:user_id AS uuid) AND status = :matched"),
        {"confirmed": USER_CONFIRMED, "matched": USER_MATCHED, "user_id": user_id},
    )
    return int(res.rowcount or 0)
