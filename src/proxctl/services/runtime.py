"""RuntimeService — engine-facing operations.

Covers previewing the merged document, (re)applying it, showing and
patching the ``engine`` and ``app`` domains, validating files, switching
cores, and engine status/stop.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from proxctl.domain.documents import Document, ParseError, parse_document
from proxctl.infrastructure.engine import EngineError, Rendering
from proxctl.infrastructure.filesystem import read_text
from proxctl.services._helpers import looks_like_script
from proxctl.services.base import BaseService, CommitFailed
from proxctl.services.result import ServiceResult
from proxctl.services.telemetry import traced

PATCHABLE_DOMAINS = ("engine", "app")
SHOWABLE_DOMAINS = ("engine", "app", "profiles", "runtime")
# Failures after which a first apply falls back to the default configuration.
FALLBACK_CODES = ("INVALID_CONFIG", "REJECTED_BY_ENGINE")

logger = logging.getLogger(__name__)


class RuntimeService(BaseService):
    """Render, apply, and inspect the running configuration."""

    @traced
    def generate(self) -> ServiceResult:
        """Build the runtime document from committed values without applying it."""
        op = "config_generate"
        try:
            result = self._ws.build()
        except ParseError as exc:
            return ServiceResult.fail(op, "PARSE_ERROR", str(exc))
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "document": result.document,
                "text": result.render(),
                "layers": [d.to_dict() for d in result.diagnostics],
            },
            warnings=result.warnings(),
        )

    @traced
    def apply(self) -> ServiceResult:
        """Re-render from committed values and push to the engine.

        Queued as a coalescing request: if several applies pile up, only
        the newest one reaches the engine.

        When the merged document is refused and the engine has never
        accepted anything, the default configuration (engine settings plus
        app settings, no profile layers) is pushed so the core still comes
        up. The result stays a failure with ``fallback`` set in its data.
        """
        op = "core_apply"
        try:
            self._commit(self._ws.profiles, op, coalesce=True)
        except CommitFailed as exc:
            failure = exc.result
            code = failure.error.code if failure.error else None
            if self._ws.lane.accepted is None and code in FALLBACK_CODES:
                return self._apply_default(failure)
            return failure
        build = self._ws.last_build
        return self._success(
            op,
            {
                "core": self._ws.app.latest().core,
                "layers": [d.to_dict() for d in build.diagnostics] if build else [],
            },
        )

    def _apply_default(self, failure: ServiceResult) -> ServiceResult:
        try:
            rendering = self._ws.render_default()
            self._ws.lane.push(rendering)
        except (ValueError, EngineError) as exc:
            logger.error("Default configuration was refused too: %s", exc)
            return failure.model_copy(
                update={"warnings": [*failure.warnings, f"default configuration failed: {exc}"]}
            )
        logger.warning("Applied the default configuration after a refused apply")
        self._ws.notify("config_updated", domain="runtime")
        return failure.model_copy(
            update={
                "data": {"core": rendering.core, "fallback": True},
                "warnings": [
                    *failure.warnings,
                    "applied the default configuration (no profile layers)",
                ],
            }
        )

    @traced
    def show(self, domain: str) -> ServiceResult:
        op = "config_show"
        if domain not in SHOWABLE_DOMAINS:
            return ServiceResult.fail(
                op, "INVALID_ARGUMENT", f"Unknown domain {domain!r} ({', '.join(SHOWABLE_DOMAINS)})"
            )
        value: Any
        if domain == "engine":
            value = self._ws.engine_settings.latest()
        elif domain == "app":
            value = self._ws.app.latest().model_dump(mode="json")
        elif domain == "profiles":
            catalog = self._ws.profiles.latest()
            value = {
                "current": catalog.current,
                "items": [item.snapshot() for item in catalog.items],
                "global_merge": list(catalog.global_merge),
                "global_script": list(catalog.global_script),
            }
        else:
            accepted = self._ws.lane.accepted
            if accepted is None:
                return ServiceResult.fail(op, "NOT_FOUND", "Nothing has been applied yet")
            value = {"core": accepted.core, "text": accepted.text}
        return ServiceResult(ok=True, op=op, data={"domain": domain, "value": value})

    @traced
    def patch(self, domain: str, edits: Document) -> ServiceResult:
        """Merge *edits* into the ``engine`` document or the ``app`` settings."""
        op = "config_patch"
        if domain not in PATCHABLE_DOMAINS:
            return ServiceResult.fail(
                op, "INVALID_ARGUMENT", f"Only {' and '.join(PATCHABLE_DOMAINS)} can be patched"
            )
        if not edits:
            return ServiceResult.fail(op, "INVALID_ARGUMENT", "No edits given")
        target = self._ws.engine_settings if domain == "engine" else self._ws.app
        try:
            self._commit(target, op, edits)
        except CommitFailed as exc:
            return exc.result
        return self._success(op, {"domain": domain, "keys": sorted(edits)})

    @traced
    def validate_file(self, path: Path) -> ServiceResult:
        """Check a script (sandbox syntax + ``main``) or a document (parse + engine)."""
        op = "config_validate"
        text = read_text(path)
        if text is None:
            return ServiceResult.fail(op, "NOT_FOUND", f"No such file: {path}")

        if looks_like_script(path, text):
            error = self._ws.sandbox.check(text)
            if error is not None:
                return ServiceResult.fail(op, "PARSE_ERROR", error.message, path=str(path))
            return ServiceResult(ok=True, op=op, data={"path": str(path), "kind": "script"})

        try:
            parse_document(text, source=str(path))
        except ParseError as exc:
            return ServiceResult.fail(op, "PARSE_ERROR", str(exc), path=str(path))
        try:
            self._ws.engine.check(Rendering(text=text, core=self._ws.app.latest().core))
        except EngineError as exc:
            return ServiceResult.fail(op, "INVALID_CONFIG", str(exc), path=str(path))
        return ServiceResult(ok=True, op=op, data={"path": str(path), "kind": "document"})

    @traced
    def change_core(self, core: str) -> ServiceResult:
        """Switch the engine binary; the new core must accept the merged document."""
        op = "core_change"
        allowed = self._ws.settings.engine.cores
        if core not in allowed:
            return ServiceResult.fail(
                op, "INVALID_CORE", f"Unknown core {core!r} (allowed: {', '.join(allowed)})"
            )
        previous = self._ws.app.latest().core
        if core == previous:
            return self._success(op, {"core": core, "previous": previous}, rendered=False)
        try:
            self._commit(self._ws.app, op, {"core": core})
        except CommitFailed as exc:
            return exc.result
        return self._success(op, {"core": core, "previous": previous})

    @traced
    def status(self) -> ServiceResult:
        accepted = self._ws.lane.accepted
        try:
            self._ws.engine.healthcheck()
            running, detail = True, None
        except EngineError as exc:
            running, detail = False, str(exc)
        data: dict[str, Any] = {
            "running": running,
            "core": accepted.core if accepted else self._ws.app.latest().core,
            "applied": accepted is not None,
            "current": self._ws.profiles.latest().current,
        }
        if detail:
            data["detail"] = detail
        return ServiceResult(ok=True, op="core_status", data=data)

    @traced
    def stop(self) -> ServiceResult:
        try:
            self._ws.engine.stop()
        except EngineError as exc:
            return ServiceResult.fail("core_stop", "REJECTED_BY_ENGINE", str(exc))
        return ServiceResult(ok=True, op="core_stop", data={"running": False})
