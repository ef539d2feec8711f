"""Profile items and the profile catalog (the Profile Registry state).

A :class:`ProfileCatalog` is immutable: every mutating operation returns
a new catalog. The Draft/Commit store swaps whole catalogs, so readers
only ever see complete snapshots.

INVARIANT: removing an item also removes every reference to it (the
active selection, other items' chains, and the global bands).
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Iterable
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from proxctl.domain.layers import (
    Band,
    FinalAdjustLayer,
    Layer,
    MergeLayer,
    ScriptLayer,
    UnresolvedLayer,
)


class ProfileKind(StrEnum):
    """The four kinds of configuration source."""

    LOCAL = "local"
    REMOTE = "remote"
    MERGE = "merge"
    SCRIPT = "script"

    @property
    def is_base(self) -> bool:
        """Whether items of this kind can be the active profile."""
        return self in (ProfileKind.LOCAL, ProfileKind.REMOTE)

    @property
    def is_layer(self) -> bool:
        """Whether items of this kind can appear in a layer chain."""
        return self in (ProfileKind.MERGE, ProfileKind.SCRIPT)


KIND_PREFIXES: dict[ProfileKind, str] = {
    ProfileKind.LOCAL: "L",
    ProfileKind.REMOTE: "R",
    ProfileKind.MERGE: "M",
    ProfileKind.SCRIPT: "S",
}

PROFILE_ID_PATTERN = re.compile(r"^[LRMS][0-9a-f]{12}$")


def generate_profile_id(kind: ProfileKind) -> str:
    """Return a fresh id: kind letter followed by 12 hex chars."""
    return f"{KIND_PREFIXES[kind]}{uuid.uuid4().hex[:12]}"


def validate_profile_id(profile_id: str) -> bool:
    return PROFILE_ID_PATTERN.match(profile_id) is not None


class SubscriptionInfo(BaseModel):
    """Usage counters reported by a remote subscription."""

    model_config = {"frozen": True}

    upload: int = 0
    download: int = 0
    total: int = 0
    expire: int = 0


class ProfileItem(BaseModel):
    """One named configuration source."""

    model_config = {"frozen": True}

    id: str
    name: str
    kind: ProfileKind
    content: str = ""
    desc: str | None = None
    url: str | None = None
    interval: int = 0  # minutes; 0 disables automatic refresh
    headers: dict[str, str] = Field(default_factory=dict)
    updated: datetime | None = None
    enabled: bool = True
    chain: tuple[str, ...] = ()
    extra: SubscriptionInfo | None = None

    def snapshot(self) -> dict[str, Any]:
        """Metadata view without the raw content (for listings)."""
        return self.model_dump(mode="json", exclude={"content"})


class ProfileCatalog(BaseModel):
    """Ordered catalog of profile items plus activation state."""

    model_config = {"frozen": True}

    items: tuple[ProfileItem, ...] = ()
    current: str | None = None
    global_merge: tuple[str, ...] = ()
    global_script: tuple[str, ...] = ()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, profile_id: str) -> ProfileItem | None:
        for item in self.items:
            if item.id == profile_id:
                return item
        return None

    def require(self, profile_id: str) -> ProfileItem:
        """Like :meth:`get` but raises ``KeyError`` for unknown ids."""
        item = self.get(profile_id)
        if item is None:
            raise KeyError(profile_id)
        return item

    @property
    def ids(self) -> list[str]:
        return [item.id for item in self.items]

    @property
    def active(self) -> ProfileItem | None:
        return self.get(self.current) if self.current else None

    def remote_items(self) -> list[ProfileItem]:
        return [item for item in self.items if item.kind is ProfileKind.REMOTE and item.url]

    # ------------------------------------------------------------------
    # Pure mutations
    # ------------------------------------------------------------------

    def append(self, item: ProfileItem) -> ProfileCatalog:
        if self.get(item.id) is not None:
            msg = f"Duplicate profile id: {item.id}"
            raise ValueError(msg)
        return self.model_copy(update={"items": (*self.items, item)})

    def replace(self, item: ProfileItem) -> ProfileCatalog:
        self.require(item.id)
        items = tuple(item if existing.id == item.id else existing for existing in self.items)
        return self.model_copy(update={"items": items})

    def update_item(self, profile_id: str, **changes: Any) -> ProfileCatalog:
        """Return a catalog where item *profile_id* has *changes* applied (re-validated)."""
        item = self.require(profile_id)
        data = item.model_dump()
        data.update(changes)
        return self.replace(ProfileItem.model_validate(data))

    def remove(self, profile_id: str) -> ProfileCatalog:
        self.require(profile_id)
        items = tuple(
            item.model_copy(update={"chain": _without(item.chain, profile_id)})
            for item in self.items
            if item.id != profile_id
        )
        return self.model_copy(
            update={
                "items": items,
                "current": None if self.current == profile_id else self.current,
                "global_merge": _without(self.global_merge, profile_id),
                "global_script": _without(self.global_script, profile_id),
            }
        )

    def activate(self, profile_id: str) -> ProfileCatalog:
        item = self.require(profile_id)
        if not item.kind.is_base:
            msg = f"Profile {profile_id} is a {item.kind} item and cannot be activated"
            raise ValueError(msg)
        return self.model_copy(update={"current": profile_id})

    def reorder(self, ordered_ids: Iterable[str]) -> ProfileCatalog:
        """Move the given ids to the front in the given order; others keep their order."""
        wanted = list(dict.fromkeys(ordered_ids))
        for profile_id in wanted:
            self.require(profile_id)
        head = [self.require(profile_id) for profile_id in wanted]
        tail = [item for item in self.items if item.id not in wanted]
        return self.model_copy(update={"items": (*head, *tail)})

    def set_chain(self, profile_id: str, chain: Iterable[str]) -> ProfileCatalog:
        owner = self.require(profile_id)
        if not owner.kind.is_base:
            msg = f"Only local/remote profiles carry a chain, {profile_id} is {owner.kind}"
            raise ValueError(msg)
        ids = self._layer_ids(chain)
        return self.replace(owner.model_copy(update={"chain": ids}))

    def set_global(self, kind: ProfileKind, ids: Iterable[str]) -> ProfileCatalog:
        """Replace the global merge or script band."""
        resolved = self._layer_ids(ids, kind=kind)
        if kind is ProfileKind.MERGE:
            return self.model_copy(update={"global_merge": resolved})
        if kind is ProfileKind.SCRIPT:
            return self.model_copy(update={"global_script": resolved})
        msg = f"Global bands hold merge or script items, not {kind}"
        raise ValueError(msg)

    def _layer_ids(
        self,
        ids: Iterable[str],
        *,
        kind: ProfileKind | None = None,
    ) -> tuple[str, ...]:
        result = tuple(dict.fromkeys(ids))
        for layer_id in result:
            item = self.require(layer_id)
            if not item.kind.is_layer or (kind is not None and item.kind is not kind):
                expected = kind.value if kind else "merge/script"
                msg = f"Profile {layer_id} is {item.kind}, expected {expected}"
                raise ValueError(msg)
        return result

    # ------------------------------------------------------------------
    # Layer chain
    # ------------------------------------------------------------------

    def layer_chain(
        self,
        active_id: str | None,
        final_patch: dict[str, Any] | None = None,
    ) -> list[Layer]:
        """Build the ordered layer list for a pipeline run.

        Bands: global merge, global script, the active profile's own chain,
        then the final adjustment. User order is kept inside each band.
        """
        layers: list[Layer] = []
        layers.extend(self._resolve(layer_id, Band.GLOBAL_MERGE) for layer_id in self.global_merge)
        layers.extend(
            self._resolve(layer_id, Band.GLOBAL_SCRIPT) for layer_id in self.global_script
        )
        active = self.get(active_id) if active_id else None
        if active is not None:
            layers.extend(self._resolve(layer_id, Band.PROFILE_CHAIN) for layer_id in active.chain)
        layers.append(FinalAdjustLayer(patch=dict(final_patch or {})))
        return layers

    def _resolve(self, layer_id: str, band: Band) -> Layer:
        item = self.get(layer_id)
        if item is None:
            return UnresolvedLayer(id=layer_id, band=band, reason="unknown profile")
        if item.kind is ProfileKind.MERGE:
            return MergeLayer(id=item.id, band=band, source=item.content, enabled=item.enabled)
        if item.kind is ProfileKind.SCRIPT:
            return ScriptLayer(id=item.id, band=band, program=item.content, enabled=item.enabled)
        return UnresolvedLayer(id=layer_id, band=band, reason=f"{item.kind} profile is not a layer")


def _without(ids: tuple[str, ...], profile_id: str) -> tuple[str, ...]:
    return tuple(i for i in ids if i != profile_id)
