from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from enum import Enum
from typing import Any

from .pending import ChangeKind, PendingChange

OP_KEY = "__op__"

MergeStrategy = Callable[[Any, Mapping[str, Any]], Any]


class ConflictPolicy(str, Enum):
    """Supported per-field merge policies."""

    LWW = "lww"
    OR_SET = "or_set"
    MV_REGISTER = "mv"


def shallow_merge(base: Any, changes: Mapping[str, Any]) -> dict[str, Any]:
    """Overwrite top-level fields of ``base`` with ``changes``; last write wins."""

    merged = dict(base) if isinstance(base, Mapping) else {}
    merged.update(changes)
    return merged


def drop_fields(base: Any, fields: Iterable[str]) -> dict[str, Any]:
    removed = set(fields)
    if not isinstance(base, Mapping):
        return {}
    return {key: value for key, value in base.items() if key not in removed}


def fold_changes(base: Any, changes: Sequence[PendingChange], merge: MergeStrategy = shallow_merge) -> Any:
    """Apply ``changes`` in log order on top of ``base``."""

    result = base
    for change in changes:
        if change.kind is ChangeKind.DELETE:
            result = drop_fields(result, change.payload)
        else:
            result = merge(result, change.payload)
    return result


class FieldPolicyMerge:
    """Merge strategy with per-field policies, recursing into nested mappings.

    Field paths are dotted (``"header.tags"``). ``lww`` overwrites,
    ``or_set`` treats the value as a set with optional ``{"add": [...],
    "remove": [...]}`` operations, and ``mv`` keeps the ordered union of
    every value written.
    """

    def __init__(
        self,
        default_policy: ConflictPolicy = ConflictPolicy.LWW,
        field_policies: Mapping[str, ConflictPolicy] | None = None,
    ) -> None:
        self.default_policy = default_policy
        self.field_policies = {key: ConflictPolicy(value) for key, value in (field_policies or {}).items()}

    def __call__(self, base: Any, changes: Mapping[str, Any]) -> dict[str, Any]:
        state = _deep_copy_mappings(base) if isinstance(base, Mapping) else {}
        self._apply_patch(state, changes, ())
        return state

    def _apply_patch(self, root: dict[str, Any], patch: Mapping[str, Any], path: tuple[str, ...]) -> None:
        for key, value in patch.items():
            current_path = path + (key,)
            path_key = ".".join(current_path)
            policy = self.field_policies.get(path_key, self.default_policy)

            if policy is ConflictPolicy.LWW and isinstance(value, Mapping) and OP_KEY not in value:
                nested_policies = any(name.startswith(path_key + ".") for name in self.field_policies)
                if nested_policies:
                    target = root.get(key)
                    if not isinstance(target, dict):
                        target = {}
                    root[key] = target
                    self._apply_patch(target, value, current_path)
                    continue

            if policy is ConflictPolicy.OR_SET:
                added, removed = _collection_patch(value, "add")
                members = (set(_items(root.get(key))) | set(added)) - set(removed)
                root[key] = sorted(members, key=repr)
                continue

            if policy is ConflictPolicy.MV_REGISTER:
                added, _ = _collection_patch(value, "values")
                root[key] = _ordered_union(_items(root.get(key)), added)
                continue

            root[key] = value


def _items(value: Any) -> list[Any]:
    if isinstance(value, Iterable) and not isinstance(value, (str, bytes, Mapping)):
        return list(value)
    return []


def _collection_patch(value: Any, add_key: str) -> tuple[list[Any], list[Any]]:
    """Split a collection patch into ``(added, removed)`` items.

    A mapping carries explicit ``add_key``/``"remove"`` lists, a list adds
    every item and a scalar adds itself.
    """

    if isinstance(value, Mapping):
        return _items(value.get(add_key)), _items(value.get("remove"))
    if value is None:
        return [], []
    if isinstance(value, Iterable) and not isinstance(value, (str, bytes)):
        return list(value), []
    return [value], []


def _ordered_union(current: list[Any], added: list[Any]) -> list[Any]:
    seen: list[Any] = []
    for item in [*current, *added]:
        if item not in seen:
            seen.append(item)
    return seen


def _deep_copy_mappings(value: Mapping[str, Any]) -> dict[str, Any]:
    return {key: _deep_copy_mappings(item) if isinstance(item, Mapping) else item for key, item in value.items()}


__all__ = [
    "ConflictPolicy",
    "FieldPolicyMerge",
    "MergeStrategy",
    "drop_fields",
    "fold_changes",
    "shallow_merge",
]
