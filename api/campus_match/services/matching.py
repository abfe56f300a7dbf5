from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy.exc import SQLAlchemyError

from .. import repo
from ..config import MatchingConfig
from ..errors import MatchingExecutionError, MatchingInProgressError
from ..forms import FinalMatch, UserForm, canonical_pair
from ..tags import TagIndex, check_form_tags
from .scoring import build_tag_frequencies, compute_match_score
from .state_machine import USER_MATCHED

logger = logging.getLogger(__name__)

_final_run_lock = threading.Lock()


@dataclass
class MatchCandidate:
    user_id: str
    matched_user_id: str
    score_total: float


@dataclass
class FinalMatchingResult:
    matches: list[FinalMatch] = field(default_factory=list)
    cleanup_completed: bool = True
    dry_run: bool = False

    @property
    def matches_created(self) -> int:
        return len(self.matches)


def build_veto_map(vetoes: Iterable[tuple[str, str]]) -> dict[str, set[str]]:
    """Map each vetoed user id to the set of users who vetoed them."""
    veto_map: dict[str, set[str]] = {}
    for vetoer_id, vetoed_id in vetoes:
        veto_map.setdefault(str(vetoed_id), set()).add(str(vetoer_id))
    return veto_map


def has_vetoed(vetoer_id: str, vetoed_id: str, veto_map: Mapping[str, set[str]]) -> bool:
    return vetoer_id in veto_map.get(vetoed_id, ())


def build_candidate_pairs(
    forms: list[UserForm],
    veto_map: Mapping[str, set[str]],
    tag_index: TagIndex,
    frequencies: Mapping[str, int],
    total_population: int,
    cfg: MatchingConfig,
) -> list[MatchCandidate]:
    candidates: list[MatchCandidate] = []
    for i in range(len(forms)):
        for j in range(i + 1, len(forms)):
            u = forms[i]
            v = forms[j]
            if has_vetoed(u.user_id, v.user_id, veto_map) or has_vetoed(v.user_id, u.user_id, veto_map):
                continue
            score = compute_match_score(u, v, tag_index, frequencies, total_population, cfg)
            if not math.isfinite(score):
                logger.error("[MATCHING] Non-finite score for user_a=%s user_b=%s, skipping pair", u.user_id, v.user_id)
                continue
            if score <= 0:
                continue
            candidates.append(MatchCandidate(user_id=u.user_id, matched_user_id=v.user_id, score_total=score))
    return candidates


def greedy_one_to_one_match(pairs: list[MatchCandidate]) -> list[FinalMatch]:
    """Accept pairs in descending score order while both users are still free.

    Ties keep the order in which the pairs were generated.
    """
    matched: set[str] = set()
    assignments: list[FinalMatch] = []
    for pair in sorted(pairs, key=lambda p: -p.score_total):
        if pair.user_id in matched or pair.matched_user_id in matched:
            continue
        matched.add(pair.user_id)
        matched.add(pair.matched_user_id)
        user_a, user_b = canonical_pair(pair.user_id, pair.matched_user_id)
        assignments.append(FinalMatch(user_a_id=user_a, user_b_id=user_b, score=pair.score_total))
    return assignments


def assign_final_matches(
    forms: list[UserForm],
    vetoes: Iterable[tuple[str, str]],
    tag_index: TagIndex,
    frequencies: Mapping[str, int],
    total_population: int,
    cfg: MatchingConfig,
) -> list[FinalMatch]:
    pairs = build_candidate_pairs(forms, build_veto_map(vetoes), tag_index, frequencies, total_population, cfg)
    return greedy_one_to_one_match(pairs)


def rank_previews(
    forms: list[UserForm],
    veto_map: Mapping[str, set[str]],
    tag_index: TagIndex,
    frequencies: Mapping[str, int],
    total_population: int,
    cfg: MatchingConfig,
) -> dict[str, list[tuple[str, float]]]:
    previews: dict[str, list[tuple[str, float]]] = {}
    for viewer in forms:
        scored: list[tuple[str, float]] = []
        for candidate in forms:
            if candidate.user_id == viewer.user_id:
                continue
            # Hide candidates who already rejected the viewer.
            if has_vetoed(candidate.user_id, viewer.user_id, veto_map):
                continue
            score = compute_match_score(viewer, candidate, tag_index, frequencies, total_population, cfg)
            if score > 0:
                scored.append((candidate.user_id, score))
        scored.sort(key=lambda x: -x[1])
        previews[viewer.user_id] = scored[: cfg.max_preview_candidates]
    return previews


def _log_form_problems(forms: list[UserForm], tag_index: TagIndex, cfg: MatchingConfig) -> None:
    for form in forms:
        for problem in check_form_tags(form, tag_index, cfg.tags_limit_sum):
            logger.warning("[MATCHING] Form of user_id=%s: %s", form.user_id, problem)


def run_final_matching(
    db,
    tag_index: TagIndex,
    cfg: MatchingConfig,
    dry_run: bool = False,
    on_commit: Callable[[Any, list[FinalMatch]], None] | None = None,
) -> FinalMatchingResult:
    """Pair the unmatched population and persist the result in one transaction.

    Only one writing run executes at a time in this process; a second caller
    gets ``MatchingInProgressError`` instead of waiting. ``on_commit`` runs
    inside the same transaction, after the matches are written and before the
    commit. Dry runs take no lock and write nothing.
    """
    if dry_run:
        return _run_final_matching(db, tag_index, cfg, dry_run=True, on_commit=None)
    if not _final_run_lock.acquire(blocking=False):
        raise MatchingInProgressError("A final matching run is already in progress")
    try:
        return _run_final_matching(db, tag_index, cfg, dry_run=False, on_commit=on_commit)
    finally:
        _final_run_lock.release()


def _run_final_matching(db, tag_index, cfg, dry_run, on_commit) -> FinalMatchingResult:
    try:
        forms = repo.fetch_forms(db, scope="unmatched")
        vetoes = repo.fetch_vetoes(db)
    except SQLAlchemyError as exc:
        raise MatchingExecutionError(f"Failed to load matching population: {exc}") from exc

    if not forms:
        logger.info("[MATCHING] No unmatched forms, nothing to match")
        if on_commit is not None:
            _persist_round(db, [], on_commit)
        return FinalMatchingResult(dry_run=dry_run)

    _log_form_problems(forms, tag_index, cfg)
    frequencies = build_tag_frequencies(forms, tag_index)
    matches = assign_final_matches(forms, vetoes, tag_index, frequencies, len(forms), cfg)
    logger.info("[MATCHING] population=%s vetoes=%s pairs=%s dry_run=%s", len(forms), len(vetoes), len(matches), dry_run)

    if dry_run:
        return FinalMatchingResult(matches=matches, dry_run=True)

    _persist_round(db, matches, on_commit)
    return FinalMatchingResult(matches=matches, cleanup_completed=clear_round_state(db))


def _persist_round(db, matches: list[FinalMatch], on_commit) -> None:
    try:
        for match in matches:
            match.id = repo.persist_final_match(db, match.user_a_id, match.user_b_id, match.score)
            repo.set_user_status(db, match.user_a_id, USER_MATCHED)
            repo.set_user_status(db, match.user_b_id, USER_MATCHED)
        if on_commit is not None:
            on_commit(db, matches)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise MatchingExecutionError(f"Failed to persist final matches: {exc}") from exc
    except MatchingExecutionError:
        db.rollback()
        raise


def clear_round_state(db) -> bool:
    """Drop all vetoes and previews once a round has been committed. Safe to repeat."""
    try:
        vetoes_removed = repo.clear_vetoes(db)
        previews_removed = repo.clear_previews(db)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[MATCHING] Failed to clear vetoes and previews after final matching")
        return False
    logger.info("[MATCHING] Cleared %s vetoes and %s previews", vetoes_removed, previews_removed)
    return True


def generate_match_previews(db, tag_index: TagIndex, cfg: MatchingConfig) -> int:
    try:
        forms = repo.fetch_forms(db, scope="unmatched")
        if not forms:
            logger.debug("[PREVIEWS] No forms found, skipping preview generation")
            return 0
        # Frequencies come from every submitted form, not just the unmatched ones.
        all_forms = repo.fetch_forms(db, scope="all")
        veto_map = build_veto_map(repo.fetch_vetoes(db))

        frequencies = build_tag_frequencies(all_forms, tag_index)
        previews = rank_previews(forms, veto_map, tag_index, frequencies, len(all_forms), cfg)

        for user_id, ranked in previews.items():
            repo.upsert_preview(db, user_id, [c for c, _ in ranked], [s for _, s in ranked])
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise MatchingExecutionError(f"Failed to generate match previews: {exc}") from exc

    logger.info("[PREVIEWS] Generated previews for %s users", len(previews))
    return len(previews)
