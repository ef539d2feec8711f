"""Layer variants consumed by the enhancement pipeline.

The set of layer kinds is closed: the pipeline dispatches on these
classes with a single ``match`` statement, in band order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from typing import Any


class Band(IntEnum):
    """Fixed evaluation bands, lowest value runs first."""

    GLOBAL_MERGE = 1
    GLOBAL_SCRIPT = 2
    PROFILE_CHAIN = 3
    FINAL_ADJUST = 4

    @property
    def label(self) -> str:
        return self.name.lower().replace("_", "-")


class LayerOutcome(StrEnum):
    APPLIED = "applied"
    SKIPPED_ERROR = "skipped-error"
    SKIPPED_DISABLED = "skipped-disabled"


FINAL_LAYER_ID = "final-adjust"


@dataclass(frozen=True)
class MergeLayer:
    """Patch the accumulated document with a YAML fragment."""

    id: str
    band: Band
    source: str
    enabled: bool = True


@dataclass(frozen=True)
class ScriptLayer:
    """Transform the accumulated document with a sandboxed program."""

    id: str
    band: Band
    program: str
    enabled: bool = True


@dataclass(frozen=True)
class UnresolvedLayer:
    """A chain reference that does not point at a merge/script item."""

    id: str
    band: Band
    reason: str
    enabled: bool = True


@dataclass(frozen=True)
class FinalAdjustLayer:
    """Operational keys that always win over user content."""

    patch: dict[str, Any] = field(default_factory=dict)
    id: str = FINAL_LAYER_ID
    band: Band = Band.FINAL_ADJUST
    enabled: bool = True


Layer = MergeLayer | ScriptLayer | UnresolvedLayer | FinalAdjustLayer

