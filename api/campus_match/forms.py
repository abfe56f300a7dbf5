from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


def _normalize_gender(value: Any) -> Gender:
    if isinstance(value, Gender):
        return value
    return Gender(str(value).strip().lower())


def _dedupe(values: Iterable[Any] | None) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for value in values or ():
        seen.setdefault(str(value), None)
    return tuple(seen)


@dataclass(frozen=True)
class UserForm:
    user_id: str
    gender: Gender
    familiar_tags: tuple[str, ...]
    aspirational_tags: tuple[str, ...]
    self_traits: tuple[str, ...]
    ideal_traits: tuple[str, ...]
    physical_boundary: int
    recent_topics: str = ""
    self_intro: str = ""

    @classmethod
    def build(
        cls,
        user_id: Any,
        gender: Any,
        familiar_tags: Iterable[Any] | None = None,
        aspirational_tags: Iterable[Any] | None = None,
        self_traits: Iterable[Any] | None = None,
        ideal_traits: Iterable[Any] | None = None,
        physical_boundary: int = 1,
        recent_topics: str = "",
        self_intro: str = "",
    ) -> UserForm:
        return cls(
            user_id=str(user_id),
            gender=_normalize_gender(gender),
            familiar_tags=_dedupe(familiar_tags),
            aspirational_tags=_dedupe(aspirational_tags),
            self_traits=_dedupe(self_traits),
            ideal_traits=_dedupe(ideal_traits),
            physical_boundary=int(physical_boundary),
            recent_topics=recent_topics or "",
            self_intro=self_intro or "",
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> UserForm:
        return cls.build(
            user_id=row["user_id"],
            gender=row["gender"],
            familiar_tags=row.get("familiar_tags"),
            aspirational_tags=row.get("aspirational_tags"),
            self_traits=row.get("self_traits"),
            ideal_traits=row.get("ideal_traits"),
            physical_boundary=row["physical_boundary"],
            recent_topics=row.get("recent_topics") or "",
            self_intro=row.get("self_intro") or "",
        )


@dataclass
class FinalMatch:
    user_a_id: str
    user_b_id: str
    score: float
    id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"id": self.id, "user_a_id": self.user_a_id, "user_b_id": self.user_b_id, "score": self.score}


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    return tuple(sorted((user_a, user_b)))
