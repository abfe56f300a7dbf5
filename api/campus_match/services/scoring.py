from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Iterable, Mapping

from ..config import MatchingConfig
from ..forms import Gender, UserForm
from ..tags import TagIndex

logger = logging.getLogger(__name__)

INCOMPATIBLE_SCORE = -1.0


def build_tag_frequencies(forms: Iterable[UserForm], tag_index: TagIndex) -> dict[str, int]:
    """Count how many selections touch each tag, crediting every ancestor of a selected tag."""
    frequencies: Counter[str] = Counter()
    for form in forms:
        selected = dict.fromkeys([*form.familiar_tags, *form.aspirational_tags])
        for tag in selected:
            frequencies[tag] += 1
            for ancestor in tag_index.get_all_ancestors(tag):
                frequencies[ancestor] += 1
    return dict(frequencies)


def idf_score(tag: str, frequencies: Mapping[str, int], total_population: int, idf_min: float) -> float:
    if total_population <= 0:
        return idf_min
    frequency = frequencies.get(tag) or 1
    return max(math.log2(total_population / frequency), idf_min)


def closest_common_ancestor(tag_a: str, tag_b: str, tag_index: TagIndex) -> str | None:
    ancestors_b = set(tag_index.get_all_ancestors(tag_b))
    for ancestor in tag_index.get_all_ancestors(tag_a):
        if ancestor in ancestors_b:
            return ancestor
    return None


def tag_set_score(
    tags_a: Iterable[str],
    tags_b: Iterable[str],
    tag_index: TagIndex,
    frequencies: Mapping[str, int],
    total_population: int,
    cfg: MatchingConfig,
) -> float:
    tags_a = list(tags_a)
    tags_b = list(tags_b)
    direct = set(tags_a) & set(tags_b)

    score = 0.0
    for tag in direct:
        score += idf_score(tag, frequencies, total_population, cfg.idf_min)

    # Each ancestor earns credit at most once per call.
    credited: set[str] = set()
    for tag_a in tags_a:
        for tag_b in tags_b:
            if tag_a == tag_b and tag_a in direct:
                continue
            ancestor = closest_common_ancestor(tag_a, tag_b, tag_index)
            if ancestor is None or ancestor in credited or not tag_index.is_matchable(ancestor):
                continue
            score += idf_score(ancestor, frequencies, total_population, cfg.idf_min) * cfg.tag_score_decay_factor
            credited.add(ancestor)
    return score


def trait_score(form_a: UserForm, form_b: UserForm, cfg: MatchingConfig) -> float:
    a_satisfied = len(set(form_a.ideal_traits) & set(form_b.self_traits))
    b_satisfied = len(set(form_b.ideal_traits) & set(form_a.self_traits))
    return (a_satisfied + b_satisfied) * cfg.trait_match_points


def _gender_compatible(a: Gender, b: Gender) -> bool:
    return {a, b} == {Gender.MALE, Gender.FEMALE}


def compute_match_score(
    form_a: UserForm,
    form_b: UserForm,
    tag_index: TagIndex,
    frequencies: Mapping[str, int],
    total_population: int,
    cfg: MatchingConfig,
) -> float:
    """Compatibility of two forms, or ``INCOMPATIBLE_SCORE`` when a hard filter fails.

    The two familiar/aspirational cross terms are computed independently, so
    the result is not guaranteed to be symmetric in its arguments.
    """
    if not _gender_compatible(form_a.gender, form_b.gender):
        return INCOMPATIBLE_SCORE

    boundary_diff = abs(form_a.physical_boundary - form_b.physical_boundary)
    if boundary_diff > 1:
        return INCOMPATIBLE_SCORE

    score = tag_set_score(form_a.familiar_tags, form_b.familiar_tags, tag_index, frequencies, total_population, cfg)
    score += cfg.complementary_tag_weight * tag_set_score(
        form_a.familiar_tags, form_b.aspirational_tags, tag_index, frequencies, total_population, cfg
    )
    score += cfg.complementary_tag_weight * tag_set_score(
        form_b.familiar_tags, form_a.aspirational_tags, tag_index, frequencies, total_population, cfg
    )
    score += trait_score(form_a, form_b, cfg)
    if boundary_diff == 0:
        score += cfg.boundary_match_points

    logger.debug("[MATCHING] score user_a=%s user_b=%s score=%.4f", form_a.user_id, form_b.user_id, score)
    return score
