import json
import math
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

from .errors import ConfigError


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if not math.isfinite(value):
        raise ConfigError(f"{name} must be a finite number, got {raw!r}")
    return value


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class MatchingConfig:
    complementary_tag_weight: float = 0.8
    tag_score_decay_factor: float = 0.5
    trait_match_points: float = 2.0
    boundary_match_points: float = 1.0
    idf_min: float = 0.1
    tags_limit_sum: int = 10
    max_preview_candidates: int = 6

    def __post_init__(self) -> None:
        for f in fields(self):
            if not math.isfinite(getattr(self, f.name)):
                raise ConfigError(f"{f.name} must be a finite number")
        for name in (
            "complementary_tag_weight",
            "tag_score_decay_factor",
            "trait_match_points",
            "boundary_match_points",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0")
        if self.idf_min <= 0:
            raise ConfigError("idf_min must be > 0")
        if self.tags_limit_sum < 1:
            raise ConfigError("tags_limit_sum must be >= 1")
        if self.max_preview_candidates < 1:
            raise ConfigError("max_preview_candidates must be >= 1")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "MatchingConfig":
        env = os.environ if env is None else env
        cfg = cls(
            complementary_tag_weight=_env_float(env, "COMPLEMENTARY_TAG_WEIGHT", 0.8),
            tag_score_decay_factor=_env_float(env, "TAG_SCORE_DECAY_FACTOR", 0.5),
            trait_match_points=_env_float(env, "TRAIT_MATCH_POINTS", 2.0),
            boundary_match_points=_env_float(env, "BOUNDARY_MATCH_POINTS", 1.0),
            idf_min=_env_float(env, "IDF_MIN", 0.1),
            tags_limit_sum=_env_int(env, "TAGS_LIMIT_SUM", 10),
            max_preview_candidates=_env_int(env, "MAX_PREVIEW_CANDIDATES", 6),
        )
        if env.get("MATCHING_CONFIG_JSON"):
            cfg = cfg.with_overrides(_parse_overrides(env["MATCHING_CONFIG_JSON"]))
        return cfg

    def with_overrides(self, overrides: Mapping[str, Any]) -> "MatchingConfig":
        known = {f.name: f.type for f in fields(self)}
        unknown = sorted(set(overrides) - set(known))
        if unknown:
            raise ConfigError(f"Unknown matching config keys: {', '.join(unknown)}")
        coerced = {key: _coerce_override(key, value, known[key] in (int, "int")) for key, value in overrides.items()}
        return replace(self, **coerced)


def _coerce_override(key: str, value: Any, integral: bool) -> float | int:
    # JSON true/false would otherwise pass as 1/0.
    if isinstance(value, bool):
        raise ConfigError(f"{key} has invalid value {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} has invalid value {value!r}") from None
    if not math.isfinite(number):
        raise ConfigError(f"{key} must be a finite number, got {value!r}")
    if integral:
        if not number.is_integer():
            raise ConfigError(f"{key} must be an integer, got {value!r}")
        return int(number)
    return number


def _parse_overrides(raw: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"MATCHING_CONFIG_JSON is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("MATCHING_CONFIG_JSON must be a JSON object")
    return data


_default_tags = Path(__file__).resolve().parents[2] / "tags.json"
TAGS_PATH = Path(os.getenv("TAGS_PATH", str(_default_tags)))
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

MATCHING_CONFIG = MatchingConfig.from_env()

MATCH_PREVIEW_INTERVAL_SECONDS = _env_int(os.environ, "MATCH_PREVIEW_INTERVAL_SECONDS", 3600)
CHECK_SCHEDULED_MATCH_INTERVAL_SECONDS = _env_int(os.environ, "CHECK_SCHEDULED_MATCH_INTERVAL_SECONDS", 60)
CHECK_AUTO_ACCEPT_INTERVAL_SECONDS = _env_int(os.environ, "CHECK_AUTO_ACCEPT_INTERVAL_SECONDS", 600)
FINAL_MATCH_AUTO_ACCEPT_TIMEOUT_HOURS = _env_int(os.environ, "FINAL_MATCH_AUTO_ACCEPT_TIMEOUT_HOURS", 24)
ENABLE_BACKGROUND_TASKS = _env_bool(os.environ, "ENABLE_BACKGROUND_TASKS", True)

for _name, _value in (
    ("MATCH_PREVIEW_INTERVAL_SECONDS", MATCH_PREVIEW_INTERVAL_SECONDS),
    ("CHECK_SCHEDULED_MATCH_INTERVAL_SECONDS", CHECK_SCHEDULED_MATCH_INTERVAL_SECONDS),
    ("CHECK_AUTO_ACCEPT_INTERVAL_SECONDS", CHECK_AUTO_ACCEPT_INTERVAL_SECONDS),
    ("FINAL_MATCH_AUTO_ACCEPT_TIMEOUT_HOURS", FINAL_MATCH_AUTO_ACCEPT_TIMEOUT_HOURS),
):
    if _value <= 0:
        raise ConfigError(f"{_name} must be > 0")
