"""On-disk layout of the profile catalog.

``{home}/profiles.yaml`` is the ordered catalog record (item ids, the
active id, and the global merge/script bands). Each item lives in
``{home}/profiles/`` as its raw content file (``<id>.yaml``, or
``<id>.j2`` for scripts) next to a ``<id>.meta.yaml`` metadata record.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from proxctl.domain.documents import ParseError, parse_document, render_document
from proxctl.domain.profiles import (
    ProfileCatalog,
    ProfileItem,
    ProfileKind,
    validate_profile_id,
)
from proxctl.infrastructure.filesystem import (
    CATALOG_FILE,
    META_SUFFIX,
    PROFILES_DIR,
    file_transaction,
    read_text,
    resolve_inside,
)

logger = logging.getLogger(__name__)

CATALOG_HEADER = "proxctl profile catalog"


def content_filename(item: ProfileItem) -> str:
    suffix = ".j2" if item.kind is ProfileKind.SCRIPT else ".yaml"
    return f"{item.id}{suffix}"


def meta_filename(profile_id: str) -> str:
    return f"{profile_id}{META_SUFFIX}"


def content_path(home: Path, item: ProfileItem) -> Path:
    return resolve_inside(home / PROFILES_DIR, content_filename(item))


class CatalogStore:
    """Reads and writes a :class:`ProfileCatalog` under an app home."""

    def __init__(self, home: Path) -> None:
        self._home = home

    @property
    def profiles_dir(self) -> Path:
        return self._home / PROFILES_DIR

    @property
    def catalog_path(self) -> Path:
        return self._home / CATALOG_FILE

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load(self) -> ProfileCatalog:
        """Load the catalog; a missing record yields an empty catalog.

        Raises:
            ParseError: A catalog or metadata record is malformed.
        """
        raw = read_text(self.catalog_path)
        if raw is None:
            return ProfileCatalog()
        record = parse_document(raw, source=str(self.catalog_path))

        items: list[ProfileItem] = []
        for profile_id in record.get("items") or []:
            item = self._load_item(str(profile_id))
            if item is not None:
                items.append(item)

        known = {item.id for item in items}
        current = record.get("current")
        try:
            return ProfileCatalog(
                items=tuple(items),
                current=current if current in known else None,
                global_merge=tuple(i for i in record.get("global_merge") or [] if i in known),
                global_script=tuple(i for i in record.get("global_script") or [] if i in known),
            )
        except ValidationError as exc:
            raise ParseError(str(exc), source=str(self.catalog_path)) from exc

    def _load_item(self, profile_id: str) -> ProfileItem | None:
        if not validate_profile_id(profile_id):
            logger.warning("Catalog lists malformed profile id %r; skipping", profile_id)
            return None
        meta_path = resolve_inside(self.profiles_dir, meta_filename(profile_id))
        meta_raw = read_text(meta_path)
        if meta_raw is None:
            logger.warning("Profile %s listed in catalog but has no metadata; skipping", profile_id)
            return None
        meta: dict[str, Any] = parse_document(meta_raw, source=str(meta_path))
        meta["id"] = profile_id
        try:
            item = ProfileItem.model_validate(meta)
        except ValidationError as exc:
            raise ParseError(str(exc), source=str(meta_path)) from exc
        content = read_text(content_path(self._home, item)) or ""
        return item.model_copy(update={"content": content})

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(self, catalog: ProfileCatalog) -> None:
        """Write every item and the catalog record; remove files of dropped items."""
        keep = {item.id for item in catalog.items}
        with file_transaction() as txn:
            for item in catalog.items:
                txn.write(content_path(self._home, item), item.content)
                meta = item.model_dump(mode="json", exclude={"content"}, exclude_none=True)
                txn.write(
                    resolve_inside(self.profiles_dir, meta_filename(item.id)),
                    render_document(meta),
                )

            for stale_id in self._stored_ids() - keep:
                txn.delete(self.profiles_dir / meta_filename(stale_id))
                for suffix in (".yaml", ".j2"):
                    txn.delete(self.profiles_dir / f"{stale_id}{suffix}")

            record = {
                "current": catalog.current,
                "global_merge": list(catalog.global_merge),
                "global_script": list(catalog.global_script),
                "items": catalog.ids,
            }
            txn.write(self.catalog_path, render_document(record, header=CATALOG_HEADER))

    def _stored_ids(self) -> set[str]:
        if not self.profiles_dir.is_dir():
            return set()
        return {
            path.name.removesuffix(META_SUFFIX)
            for path in self.profiles_dir.glob(f"*{META_SUFFIX}")
        }
