import math

import pytest

from campus_match.config import MatchingConfig
from campus_match.forms import UserForm
from campus_match.services.scoring import (
    INCOMPATIBLE_SCORE,
    build_tag_frequencies,
    closest_common_ancestor,
    compute_match_score,
    idf_score,
    tag_set_score,
    trait_score,
)
from campus_match.tags import TagIndex, TagNode

CFG = MatchingConfig()


def _index() -> TagIndex:
    nodes = [
        TagNode(
            id="sports",
            name="Sports",
            is_matchable=True,
            children=[
                TagNode(id="soccer", name="Soccer", is_matchable=True),
                TagNode(id="volleyball", name="Volleyball", is_matchable=True),
                TagNode(id="basketball", name="Basketball", is_matchable=True),
                TagNode(id="running", name="Running", is_matchable=True),
            ],
        ),
        TagNode(
            id="academics",
            name="Academics",
            is_matchable=False,
            children=[
                TagNode(id="math", name="Math", is_matchable=True),
                TagNode(id="physics", name="Physics", is_matchable=True),
            ],
        ),
        TagNode(id="music", name="Music", is_matchable=True),
    ]
    return TagIndex.from_nodes(nodes)


def _deep_index(ball_games_matchable: bool = True) -> TagIndex:
    return TagIndex.from_nodes(
        [
            TagNode(
                id="sports",
                name="Sports",
                is_matchable=True,
                children=[
                    TagNode(
                        id="ball_games",
                        name="Ball games",
                        is_matchable=ball_games_matchable,
                        children=[
                            TagNode(id="soccer", name="Soccer", is_matchable=True),
                            TagNode(id="basketball", name="Basketball", is_matchable=True),
                            TagNode(id="volleyball", name="Volleyball", is_matchable=True),
                        ],
                    ),
                    TagNode(id="running", name="Running", is_matchable=True),
                ],
            )
        ]
    )


def _form(user_id, gender, familiar=(), aspirational=(), self_traits=(), ideal_traits=(), boundary=2):
    return UserForm.build(
        user_id,
        gender,
        familiar_tags=familiar,
        aspirational_tags=aspirational,
        self_traits=self_traits,
        ideal_traits=ideal_traits,
        physical_boundary=boundary,
    )


def test_frequencies_propagate_to_ancestors():
    idx = _index()
    forms = [
        _form("m1", "male", familiar=["soccer"], aspirational=["soccer", "music"]),
        _form("f1", "female", familiar=["volleyball", "math"]),
    ]
    freq = build_tag_frequencies(forms, idx)
    assert freq["soccer"] == 1
    assert freq["sports"] == 2
    assert freq["music"] == 1
    assert freq["academics"] == 1
    assert "running" not in freq


def test_idf_score_values():
    assert idf_score("soccer", {"soccer": 2}, 8, 0.1) == pytest.approx(2.0)
    assert idf_score("unseen", {}, 8, 0.1) == pytest.approx(3.0)
    assert idf_score("soccer", {"soccer": 8}, 8, 0.1) == pytest.approx(0.1)
    assert idf_score("soccer", {"soccer": 1}, 0, 0.1) == pytest.approx(0.1)


def test_rarer_shared_tag_scores_higher():
    idx = _index()
    freq = {"soccer": 1, "music": 4, "sports": 5}
    rare = tag_set_score(["soccer"], ["soccer"], idx, freq, 10, CFG)
    common = tag_set_score(["music"], ["music"], idx, freq, 10, CFG)
    assert rare > common


def test_closest_common_ancestor():
    idx = _index()
    assert closest_common_ancestor("soccer", "running", idx) == "sports"
    assert closest_common_ancestor("soccer", "math", idx) is None
    assert closest_common_ancestor("soccer", "unknown", idx) is None


def test_direct_beats_indirect_beats_none():
    idx = _index()
    freq = {"soccer": 2, "volleyball": 2, "sports": 6, "math": 1, "physics": 1, "academics": 2}
    direct = tag_set_score(["soccer"], ["soccer"], idx, freq, 10, CFG)
    indirect = tag_set_score(["soccer"], ["volleyball"], idx, freq, 10, CFG)
    none = tag_set_score(["soccer"], ["music"], idx, freq, 10, CFG)
    assert direct == pytest.approx(math.log2(10 / 2))
    assert indirect == pytest.approx(math.log2(10 / 6) * 0.5)
    assert direct > indirect > none == 0.0


def test_non_matchable_ancestor_earns_nothing():
    idx = _index()
    freq = {"math": 1, "physics": 1, "academics": 2}
    assert tag_set_score(["math"], ["physics"], idx, freq, 10, CFG) == 0.0


def test_ancestor_credited_once_per_call():
    idx = _index()
    freq = {"sports": 4}
    single = tag_set_score(["soccer"], ["running"], idx, freq, 16, CFG)
    many = tag_set_score(["soccer", "volleyball"], ["basketball", "running"], idx, freq, 16, CFG)
    assert single == pytest.approx(math.log2(16 / 4) * 0.5)
    assert many == pytest.approx(single)


def test_lowest_common_ancestor_is_used():
    idx = _deep_index()
    assert closest_common_ancestor("soccer", "basketball", idx) == "ball_games"
    assert closest_common_ancestor("soccer", "running", idx) == "sports"


def test_non_matchable_lowest_ancestor_does_not_fall_back_to_root():
    idx = _deep_index(ball_games_matchable=False)
    freq = {"ball_games": 2, "sports": 4}
    assert tag_set_score(["soccer"], ["basketball"], idx, freq, 16, CFG) == 0.0


def test_each_level_of_ancestor_credited_once():
    idx = _deep_index()
    freq = {"ball_games": 2, "sports": 4}
    score = tag_set_score(["soccer", "volleyball"], ["basketball", "running"], idx, freq, 16, CFG)
    expected = math.log2(16 / 2) * 0.5 + math.log2(16 / 4) * 0.5
    assert score == pytest.approx(expected)


def test_trait_score_counts_both_directions():
    a = _form("a", "male", self_traits=["tall"], ideal_traits=["kind", "funny"])
    b = _form("b", "female", self_traits=["kind", "funny", "smart"], ideal_traits=["tall", "rich"])
    assert trait_score(a, b, CFG) == pytest.approx(6.0)
    assert trait_score(b, a, CFG) == pytest.approx(6.0)


def test_same_gender_is_incompatible_regardless_of_overlap():
    idx = _index()
    a = _form("a", "female", familiar=["soccer", "music"], self_traits=["kind"], ideal_traits=["kind"])
    b = _form("b", "female", familiar=["soccer", "music"], self_traits=["kind"], ideal_traits=["kind"])
    assert compute_match_score(a, b, idx, {}, 10, CFG) == INCOMPATIBLE_SCORE


def test_boundary_gap_over_one_is_incompatible():
    idx = _index()
    a = _form("a", "male", familiar=["soccer"], boundary=1)
    b = _form("b", "female", familiar=["soccer"], boundary=3)
    assert compute_match_score(a, b, idx, {"soccer": 1}, 10, CFG) == -1.0


def test_equal_boundary_adds_bonus():
    idx = _index()
    same = compute_match_score(_form("a", "male", boundary=1), _form("b", "female", boundary=1), idx, {}, 10, CFG)
    near = compute_match_score(_form("a", "male", boundary=1), _form("b", "female", boundary=2), idx, {}, 10, CFG)
    assert same == pytest.approx(CFG.boundary_match_points)
    assert near == 0.0


def test_complementary_terms_use_weight():
    idx = _index()
    a = _form("a", "male", familiar=["music"], boundary=1)
    b = _form("b", "female", aspirational=["music"], boundary=2)
    freq = {"music": 1}
    expected = CFG.complementary_tag_weight * math.log2(4 / 1)
    assert compute_match_score(a, b, idx, freq, 4, CFG) == pytest.approx(expected)
    assert compute_match_score(b, a, idx, freq, 4, CFG) == pytest.approx(expected)


def test_gender_is_case_insensitive():
    idx = _index()
    a = _form("a", "Male")
    b = _form("b", " FEMALE ")
    assert compute_match_score(a, b, idx, {}, 10, CFG) >= 0


def test_score_is_deterministic():
    idx = _index()
    a = _form("a", "male", familiar=["soccer", "math"], aspirational=["music"], self_traits=["calm"], ideal_traits=["kind"])
    b = _form("b", "female", familiar=["running", "physics"], aspirational=["soccer"], self_traits=["kind"], ideal_traits=["calm"])
    freq = build_tag_frequencies([a, b], idx)
    first = compute_match_score(a, b, idx, freq, 2, CFG)
    assert all(compute_match_score(a, b, idx, freq, 2, CFG) == first for _ in range(5))


def test_config_weights_flow_into_score():
    idx = _index()
    a = _form("a", "male", self_traits=["tall"], ideal_traits=["kind"], boundary=3)
    b = _form("b", "female", self_traits=["kind"], ideal_traits=["tall"], boundary=3)
    cfg = MatchingConfig(trait_match_points=5.0, boundary_match_points=0.0)
    assert compute_match_score(a, b, idx, {}, 10, cfg) == pytest.approx(10.0)
