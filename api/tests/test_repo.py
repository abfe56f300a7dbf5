from datetime import datetime, timezone

import pytest

from campus_match import repo


class _Result:
    def __init__(self, rows=None, rowcount=0):
        self._rows = rows or []
        self.rowcount = rowcount

    def mappings(self):
        return self

    def all(self):
        return self._rows

    def first(self):
        return self._rows[0] if self._rows else None


class FakeDB:
    def __init__(self, rows=None, rowcount=0):
        self.calls = []
        self._rows = rows
        self._rowcount = rowcount

    def execute(self, stmt, params=None):
        self.calls.append((str(stmt), params))
        return _Result(self._rows, self._rowcount)


def _form_row(user_id, gender="male"):
    return {
        "user_id": user_id,
        "gender": gender,
        "familiar_tags": ["soccer", "soccer", "music"],
        "aspirational_tags": None,
        "recent_topics": None,
        "self_traits": ["kind"],
        "ideal_traits": [],
        "physical_boundary": 2,
        "self_intro": "hi",
    }


def test_fetch_unmatched_forms_filters_on_user_status():
    db = FakeDB(rows=[_form_row("00000000-0000-0000-0000-000000000001")])
    forms = repo.fetch_forms(db, scope="unmatched")
    sql, params = db.calls[0]
    assert "JOIN users" in sql
    assert params == {"status": "form_completed"}
    assert forms[0].familiar_tags == ("soccer", "music")
    assert forms[0].aspirational_tags == ()
    assert forms[0].recent_topics == ""


def test_fetch_all_forms_has_no_status_filter():
    db = FakeDB(rows=[])
    assert repo.fetch_forms(db, scope="all") == []
    sql, params = db.calls[0]
    assert "JOIN users" not in sql
    assert params == {}


def test_fetch_forms_rejects_unknown_scope():
    with pytest.raises(ValueError):
        repo.fetch_forms(FakeDB(), scope="matched")


def test_persist_final_match_orders_pair():
    db = FakeDB(rows=[{"id": "m-1"}])
    match_id = repo.persist_final_match(db, "bbbb", "aaaa", 2.5)
    sql, params = db.calls[0]
    assert "INSERT INTO final_matches" in sql
    assert (params["user_a_id"], params["user_b_id"]) == ("aaaa", "bbbb")
    assert match_id == "m-1"


def test_upsert_preview_replaces_previous_row():
    db = FakeDB()
    repo.upsert_preview(db, "u1", ("c1", "c2"), (3.0, 1.5))
    sql, params = db.calls[0]
    assert "ON CONFLICT (user_id)" in sql
    assert params == {"user_id": "u1", "candidate_ids": ["c1", "c2"], "scores": [3.0, 1.5]}


def test_clear_helpers_return_rowcount():
    db = FakeDB(rowcount=4)
    assert repo.clear_vetoes(db) == 4
    assert repo.clear_previews(db) == 4
    assert "DELETE FROM vetoes" in db.calls[0][0]
    assert "DELETE FROM match_previews" in db.calls[1][0]


def test_delete_pending_scheduled_match_is_conditional():
    db = FakeDB(rowcount=0)
    assert repo.delete_pending_scheduled_match(db, "s1") is False
    sql, params = db.calls[0]
    assert "status = :status" in sql
    assert params["status"] == "pending"


def test_next_pending_scheduled_time_only_looks_ahead():
    now = datetime(2026, 5, 1, tzinfo=timezone.utc)
    when = datetime(2026, 6, 1, tzinfo=timezone.utc)
    db = FakeDB(rows=[{"scheduled_time": when}])
    assert repo.next_pending_scheduled_time(db, now) == when
    sql, params = db.calls[0]
    assert "scheduled_time > :now" in sql
    assert params == {"status": "pending", "now": now}
    assert repo.next_pending_scheduled_time(FakeDB(rows=[]), now) is None


def test_finish_scheduled_match_only_updates_pending_rows():
    db = FakeDB(rowcount=1)
    assert repo.finish_scheduled_match(db, "s1", "failed", error_message="boom") is True
    sql, params = db.calls[0]
    assert "status = :pending" in sql
    assert params["status"] == "failed"
    assert params["error_message"] == "boom"
    assert params["matches_created"] is None


def test_confirm_if_matched_requires_matched_status():
    db = FakeDB(rowcount=1)
    assert repo.confirm_if_matched(db, "u1") == 1
    sql, params = db.calls[0]
    assert "status = :matched" in sql
    assert params["confirmed"] == "confirmed"
