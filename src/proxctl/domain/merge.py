"""Deterministic recursive merge of two documents.

Rules, applied per key of the patch:

- mapping onto mapping: recurse
- ``None``: remove the key from the result
- list at an *append path*: ``base + patch``, duplicates dropped by value
  equality, first-seen order kept
- anything else: the patch value replaces the base value

A path listed in both ``append_paths`` and ``replace_paths`` is replaced.

Merge never fails and never mutates its inputs.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from copy import deepcopy
from dataclasses import dataclass
from typing import Any

from proxctl.domain.documents import Document

DEFAULT_APPEND_PATHS: frozenset[str] = frozenset(
    {
        "rules",
        "dns.nameserver",
        "dns.fallback",
        "dns.default-nameserver",
        "dns.proxy-server-nameserver",
    }
)


@dataclass(frozen=True)
class MergePolicy:
    """Which dotted paths concatenate their sequences instead of replacing them."""

    append_paths: frozenset[str] = DEFAULT_APPEND_PATHS
    replace_paths: frozenset[str] = frozenset()

    def appends(self, path: str) -> bool:
        return path in self.append_paths and path not in self.replace_paths

    @classmethod
    def from_lists(
        cls,
        append_paths: Iterable[str] | None = None,
        replace_paths: Iterable[str] | None = None,
    ) -> MergePolicy:
        appends = DEFAULT_APPEND_PATHS if append_paths is None else frozenset(append_paths)
        return cls(
            append_paths=appends,
            replace_paths=frozenset(replace_paths or ()),
        )


DEFAULT_POLICY = MergePolicy()


def merge(
    base: Mapping[str, Any],
    patch: Mapping[str, Any],
    *,
    policy: MergePolicy = DEFAULT_POLICY,
) -> Document:
    """Return *base* with *patch* applied on top."""
    return _merge_mapping(base, patch, policy, ())


def merge_all(
    base: Mapping[str, Any],
    patches: Iterable[Mapping[str, Any]],
    *,
    policy: MergePolicy = DEFAULT_POLICY,
) -> Document:
    """Left fold of :func:`merge` over *patches*."""
    result: Document = deepcopy(dict(base))
    for patch in patches:
        result = merge(result, patch, policy=policy)
    return result


def dedupe(items: Iterable[Any]) -> list[Any]:
    """Drop repeated values (by ``==``), keeping the first occurrence."""
    seen: list[Any] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def _merge_mapping(
    base: Mapping[str, Any],
    patch: Mapping[str, Any],
    policy: MergePolicy,
    segments: tuple[str, ...],
) -> Document:
    result: Document = {key: deepcopy(value) for key, value in base.items()}
    for key, value in patch.items():
        key = str(key)
        path = (*segments, key)
        if value is None:
            result.pop(key, None)
            continue

        existing = result.get(key)
        if isinstance(value, Mapping):
            start = existing if isinstance(existing, Mapping) else {}
            result[key] = _merge_mapping(start, value, policy, path)
        elif isinstance(value, list) and policy.appends(".".join(path)):
            prior = existing if isinstance(existing, list) else []
            result[key] = dedupe([*prior, *deepcopy(value)])
        else:
            result[key] = deepcopy(value)
    return result
