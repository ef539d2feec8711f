"""ProfileService — catalog operations on the ``profiles`` domain.

Each mutation is a pure :class:`ProfileCatalog` operation queued on the
domain's commit lane, so it is validated, rendered and pushed before the
CLI reports success. Remote fetches happen before the commit is queued;
a failed fetch never touches stored content.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from proxctl.domain.documents import ParseError, parse_document
from proxctl.domain.profiles import (
    ProfileCatalog,
    ProfileItem,
    ProfileKind,
    generate_profile_id,
)
from proxctl.infrastructure.fetch import FetchError, FetchResult, fetch
from proxctl.services._helpers import now_utc
from proxctl.services.base import BaseService, CommitFailed
from proxctl.services.result import ServiceResult
from proxctl.services.telemetry import traced

DEFAULT_CONTENT: dict[ProfileKind, str] = {
    ProfileKind.LOCAL: "proxies: []\nproxy-groups: []\nrules: []\n",
    ProfileKind.MERGE: "# Keys in this layer are merged over the active profile.\n",
    ProfileKind.SCRIPT: (
        "{% macro main(config) -%}\n"
        "{{ config | to_yaml }}\n"
        "{%- endmacro %}\n"
    ),
}


class ProfileService(BaseService):
    """Create, edit, order and refresh profile items."""

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @traced
    def list_profiles(self) -> ServiceResult:
        catalog = self._ws.profiles.latest()
        items = []
        for item in catalog.items:
            row = item.snapshot()
            row["active"] = item.id == catalog.current
            items.append(row)
        return ServiceResult(
            ok=True,
            op="profile_list",
            data={
                "items": items,
                "count": len(items),
                "current": catalog.current,
                "global_merge": list(catalog.global_merge),
                "global_script": list(catalog.global_script),
            },
        )

    @traced
    def show_profile(self, profile_id: str) -> ServiceResult:
        catalog = self._ws.profiles.latest()
        item = catalog.get(profile_id)
        if item is None:
            return _not_found("profile_show", profile_id)
        data = item.snapshot()
        data["active"] = item.id == catalog.current
        data["content"] = item.content
        return ServiceResult(ok=True, op="profile_show", data=data)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @traced
    def create_profile(
        self,
        name: str,
        kind: str,
        *,
        content: str | None = None,
        url: str | None = None,
        interval: int = 0,
        desc: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> ServiceResult:
        """Add a new item. Remote items are fetched before they are stored."""
        op = "profile_create"
        try:
            profile_kind = ProfileKind(kind)
        except ValueError:
            valid = ", ".join(k.value for k in ProfileKind)
            return ServiceResult.fail(op, "INVALID_KIND", f"Unknown kind {kind!r} (use {valid})")
        if interval < 0:
            return ServiceResult.fail(op, "INVALID_ARGUMENT", "interval must be >= 0 minutes")

        fetched: FetchResult | None = None
        if profile_kind is ProfileKind.REMOTE:
            if not url:
                return ServiceResult.fail(op, "INVALID_ARGUMENT", "remote profiles need a URL")
            try:
                fetched = self._fetch(url, headers)
            except FetchError as exc:
                return ServiceResult.fail(op, "FETCH_FAILED", exc.message, url=url)
            content = fetched.content
        elif content is None:
            content = DEFAULT_CONTENT[profile_kind]

        problem = self._check_content(op, profile_kind, content)
        if problem is not None:
            return problem

        item = ProfileItem(
            id=generate_profile_id(profile_kind),
            name=name or (fetched.filename if fetched and fetched.filename else "Remote File"),
            kind=profile_kind,
            content=content,
            desc=desc,
            url=url if profile_kind is ProfileKind.REMOTE else None,
            interval=_resolve_interval(interval, fetched),
            headers=dict(headers or {}),
            updated=now_utc(),
            extra=fetched.extra if fetched else None,
        )
        return self._apply(op, lambda catalog: catalog.append(item), item_id=item.id)

    @traced
    def import_profile(
        self,
        url: str,
        *,
        name: str | None = None,
        interval: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> ServiceResult:
        """Create a remote profile from *url*, naming it after the server's filename."""
        result = self.create_profile(
            name or "",
            ProfileKind.REMOTE.value,
            url=url,
            interval=interval or 0,
            headers=headers,
        )
        return result.model_copy(update={"op": "profile_import"})

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    @traced
    def edit_content(self, profile_id: str, content: str) -> ServiceResult:
        op = "profile_edit"
        item = self._ws.profiles.latest().get(profile_id)
        if item is None:
            return _not_found(op, profile_id)
        problem = self._check_content(op, item.kind, content)
        if problem is not None:
            return problem
        updated = now_utc()
        return self._apply(
            op,
            lambda catalog: catalog.update_item(profile_id, content=content, updated=updated),
            item_id=profile_id,
        )

    @traced
    def update_profile(
        self,
        profile_id: str,
        *,
        name: str | None = None,
        desc: str | None = None,
        url: str | None = None,
        interval: int | None = None,
        enabled: bool | None = None,
    ) -> ServiceResult:
        """Change metadata fields. ``None`` leaves a field as it is."""
        op = "profile_update"
        item = self._ws.profiles.latest().get(profile_id)
        if item is None:
            return _not_found(op, profile_id)
        changes: dict[str, Any] = {
            key: value
            for key, value in {
                "name": name,
                "desc": desc,
                "url": url,
                "interval": interval,
                "enabled": enabled,
            }.items()
            if value is not None
        }
        if not changes:
            return ServiceResult.fail(op, "INVALID_ARGUMENT", "Nothing to update")
        if "url" in changes and item.kind is not ProfileKind.REMOTE:
            return ServiceResult.fail(op, "INVALID_ARGUMENT", "Only remote profiles have a URL")
        if changes.get("interval", 0) < 0:
            return ServiceResult.fail(op, "INVALID_ARGUMENT", "interval must be >= 0 minutes")
        return self._apply(
            op,
            lambda catalog: catalog.update_item(profile_id, **changes),
            item_id=profile_id,
            fields_changed=sorted(changes),
        )

    @traced
    def delete_profile(self, profile_id: str) -> ServiceResult:
        op = "profile_delete"
        if self._ws.profiles.latest().get(profile_id) is None:
            return _not_found(op, profile_id)
        return self._apply(op, lambda catalog: catalog.remove(profile_id), item_id=profile_id)

    @traced
    def activate(self, profile_id: str) -> ServiceResult:
        op = "profile_use"
        item = self._ws.profiles.latest().get(profile_id)
        if item is None:
            return _not_found(op, profile_id)
        if not item.kind.is_base:
            message = f"{profile_id} is a {item.kind} item, not a local/remote profile"
            return ServiceResult.fail(op, "INVALID_KIND", message)
        return self._apply(op, lambda catalog: catalog.activate(profile_id), item_id=profile_id)

    @traced
    def reorder(self, ordered_ids: list[str]) -> ServiceResult:
        op = "profile_reorder"
        missing = self._missing(ordered_ids)
        if missing:
            return _not_found(op, missing[0])
        return self._apply(op, lambda catalog: catalog.reorder(ordered_ids))

    @traced
    def set_chain(self, profile_id: str, chain: list[str]) -> ServiceResult:
        op = "profile_chain"
        missing = self._missing([profile_id, *chain])
        if missing:
            return _not_found(op, missing[0])
        return self._guarded_apply(
            op, lambda catalog: catalog.set_chain(profile_id, chain), item_id=profile_id
        )

    @traced
    def set_global(self, kind: str, ids: list[str]) -> ServiceResult:
        op = "profile_global"
        if kind not in (ProfileKind.MERGE.value, ProfileKind.SCRIPT.value):
            return ServiceResult.fail(op, "INVALID_KIND", "Global bands are 'merge' or 'script'")
        missing = self._missing(ids)
        if missing:
            return _not_found(op, missing[0])
        return self._guarded_apply(op, lambda catalog: catalog.set_global(ProfileKind(kind), ids))

    # ------------------------------------------------------------------
    # Remote refresh
    # ------------------------------------------------------------------

    @traced
    def refresh(self, profile_id: str | None = None) -> ServiceResult:
        """Re-fetch one remote profile, or every remote profile.

        A failed fetch keeps the existing content. With a single id the
        failure is the result; for a batch it becomes a warning.
        """
        op = "profile_refresh"
        catalog = self._ws.profiles.latest()
        if profile_id is not None:
            item = catalog.get(profile_id)
            if item is None:
                return _not_found(op, profile_id)
            if item.kind is not ProfileKind.REMOTE or not item.url:
                return ServiceResult.fail(op, "INVALID_KIND", f"{profile_id} is not remote")
            targets = [item]
        else:
            targets = catalog.remote_items()

        refreshed: list[str] = []
        warnings: list[str] = []
        for item in targets:
            failure = self._refresh_one(op, item)
            if failure is None:
                refreshed.append(item.id)
                continue
            if profile_id is not None:
                return failure
            message = failure.error.message if failure.error else "refresh failed"
            warnings.append(f"{item.id}: {message}")

        return ServiceResult(
            ok=True,
            op=op,
            data={"refreshed": refreshed, "failed": len(targets) - len(refreshed)},
            warnings=[*warnings, *self._build_warnings()],
        )

    def _refresh_one(self, op: str, item: ProfileItem) -> ServiceResult | None:
        assert item.url is not None
        try:
            fetched = self._fetch(item.url, item.headers)
        except FetchError as exc:
            self._ws.notify("profile_refreshed", profile_id=item.id, ok=False, message=exc.message)
            return ServiceResult.fail(op, "FETCH_FAILED", exc.message, id=item.id)

        problem = self._check_content(op, item.kind, fetched.content)
        if problem is not None:
            message = problem.error.message if problem.error else "invalid content"
            self._ws.notify("profile_refreshed", profile_id=item.id, ok=False, message=message)
            return problem

        changes: dict[str, Any] = {"content": fetched.content, "updated": now_utc()}
        if fetched.extra is not None:
            changes["extra"] = fetched.extra
        if fetched.interval is not None and item.interval == 0:
            changes["interval"] = fetched.interval

        def update(catalog: ProfileCatalog) -> ProfileCatalog:
            # The item may have been deleted while the fetch was in flight.
            if catalog.get(item.id) is None:
                return catalog
            return catalog.update_item(item.id, **changes)

        try:
            self._commit(self._ws.profiles, op, update)
        except CommitFailed as exc:
            message = exc.result.error.message if exc.result.error else "commit failed"
            self._ws.notify("profile_refreshed", profile_id=item.id, ok=False, message=message)
            return exc.result
        self._ws.notify("profile_refreshed", profile_id=item.id, ok=True, message="updated")
        return None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _fetch(self, url: str, headers: dict[str, str] | None) -> FetchResult:
        remote = self._ws.settings.remote
        return fetch(url, headers=headers, timeout=remote.timeout, user_agent=remote.user_agent)

    def _check_content(self, op: str, kind: ProfileKind, content: str) -> ServiceResult | None:
        if kind is ProfileKind.SCRIPT:
            error = self._ws.sandbox.check(content)
            if error is not None:
                return ServiceResult.fail(op, "PARSE_ERROR", error.message)
            return None
        try:
            parse_document(content)
        except ParseError as exc:
            return ServiceResult.fail(op, "PARSE_ERROR", str(exc))
        return None

    def _missing(self, ids: Iterable[str]) -> list[str]:
        catalog = self._ws.profiles.latest()
        return [i for i in ids if catalog.get(i) is None]

    def _guarded_apply(
        self,
        op: str,
        edit: Callable[[ProfileCatalog], ProfileCatalog],
        **data: Any,
    ) -> ServiceResult:
        """Like :meth:`_apply`, but report kind mismatches as INVALID_KIND."""
        try:
            edit(self._ws.profiles.latest())
        except ValueError as exc:
            return ServiceResult.fail(op, "INVALID_KIND", str(exc))
        return self._apply(op, edit, **data)

    def _apply(
        self,
        op: str,
        edit: Callable[[ProfileCatalog], ProfileCatalog],
        **data: Any,
    ) -> ServiceResult:
        try:
            catalog = self._commit(self._ws.profiles, op, edit)
        except CommitFailed as exc:
            return exc.result
        return self._success(op, {**data, "current": catalog.current, "count": len(catalog.items)})


def _not_found(op: str, profile_id: str) -> ServiceResult:
    return ServiceResult.fail(op, "NOT_FOUND", f"No profile with id {profile_id!r}", id=profile_id)


def _resolve_interval(requested: int, fetched: FetchResult | None) -> int:
    if requested or fetched is None or fetched.interval is None:
        return requested
    return fetched.interval
