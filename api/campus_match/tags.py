from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, TypeAdapter, ValidationError

from .errors import ConfigError

logger = logging.getLogger(__name__)


class TagNode(BaseModel):
    id: str
    name: str
    desc: Optional[str] = None
    is_matchable: bool
    children: Optional[list[TagNode]] = None


TagNode.model_rebuild()

_tag_forest_adapter = TypeAdapter(list[TagNode])


class TagIndex:
    """Read-only lookups over a tag forest.

    Unknown tag ids are tolerated everywhere: they have no parent, no
    ancestors, and are not matchable.
    """

    def __init__(self, parent_of: dict[str, str], matchable: dict[str, bool]):
        self._parent_of = dict(parent_of)
        self._matchable = dict(matchable)
        self._ancestors: dict[str, tuple[str, ...]] = {}
        for tag_id in self._matchable:
            chain: list[str] = []
            current = tag_id
            while current in self._parent_of:
                current = self._parent_of[current]
                chain.append(current)
            self._ancestors[tag_id] = tuple(chain)

    @classmethod
    def from_nodes(cls, nodes: Iterable[TagNode]) -> TagIndex:
        parent_of: dict[str, str] = {}
        matchable: dict[str, bool] = {}

        def visit(node: TagNode, parent_id: str | None) -> None:
            if node.id in matchable:
                raise ConfigError(f"Duplicate tag id in tag definition: {node.id}")
            matchable[node.id] = node.is_matchable
            if parent_id is not None:
                parent_of[node.id] = parent_id
            for child in node.children or []:
                visit(child, node.id)

        for root in nodes:
            visit(root, None)
        return cls(parent_of, matchable)

    def __contains__(self, tag_id: object) -> bool:
        return tag_id in self._matchable

    def __len__(self) -> int:
        return len(self._matchable)

    def get_parent(self, tag_id: str) -> str | None:
        return self._parent_of.get(tag_id)

    def is_matchable(self, tag_id: str) -> bool:
        return self._matchable.get(tag_id, False)

    def get_all_ancestors(self, tag_id: str) -> list[str]:
        """Ancestors nearest-first, ending at a root. Excludes ``tag_id`` itself."""
        return list(self._ancestors.get(tag_id, ()))


def parse_tag_forest(raw: str | bytes) -> list[TagNode]:
    try:
        return _tag_forest_adapter.validate_json(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid tag definition: {exc}") from exc


def load_tag_index(path: Path) -> TagIndex:
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise ConfigError(f"Cannot read tag definition at {path}: {exc}") from exc
    index = TagIndex.from_nodes(parse_tag_forest(raw))
    logger.info("[TAGS] Loaded %s tags from %s", len(index), str(path))
    return index


def check_form_tags(form, tag_index: TagIndex, tags_limit_sum: int) -> list[str]:
    problems: list[str] = []
    for tag in [*form.familiar_tags, *form.aspirational_tags]:
        if tag not in tag_index:
            problems.append(f"unknown tag id {tag!r}")
    total = len(form.familiar_tags) + len(form.aspirational_tags)
    if total > tags_limit_sum:
        problems.append(f"{total} tags selected, limit is {tags_limit_sum}")
    return problems
