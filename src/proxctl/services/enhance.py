"""Enhancement pipeline — fold the layer chain into one engine document.

Bands run in fixed order (global merge, global script, the active
profile's chain, final adjustment). Merge layers patch the accumulated
document; script layers replace it with the sandbox output.

INVARIANT: a build always completes. A failing layer is recorded as
``skipped-error`` and the document it received is passed on unchanged.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from copy import deepcopy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from proxctl.domain.documents import Document, ParseError, parse_document, render_document
from proxctl.domain.layers import (
    Band,
    FinalAdjustLayer,
    LayerOutcome,
    MergeLayer,
    ScriptLayer,
    UnresolvedLayer,
)
from proxctl.domain.merge import DEFAULT_POLICY, MergePolicy, merge
from proxctl.services.telemetry import trace_span

if TYPE_CHECKING:
    from proxctl.config.models import AppConfig
    from proxctl.domain.profiles import ProfileCatalog
    from proxctl.infrastructure.sandbox import ScriptSandbox

log = structlog.get_logger("proxctl.pipeline")

RUNTIME_HEADER = "proxctl runtime\ngenerated file, edits are overwritten on the next apply"


@dataclass(frozen=True)
class LayerDiagnostic:
    """What happened to one layer during a build."""

    layer_id: str
    band: Band
    outcome: LayerOutcome
    error_kind: str | None = None  # timeout | runtime | parse | unresolved
    detail: str | None = None
    logs: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "layer_id": self.layer_id,
            "band": self.band.label,
            "outcome": str(self.outcome),
        }
        if self.error_kind:
            data["error_kind"] = self.error_kind
        if self.detail:
            data["detail"] = self.detail
        if self.logs:
            data["logs"] = list(self.logs)
        return data


@dataclass(frozen=True)
class PipelineResult:
    document: Document
    diagnostics: tuple[LayerDiagnostic, ...] = field(default_factory=tuple)

    @property
    def failed(self) -> list[LayerDiagnostic]:
        return [d for d in self.diagnostics if d.outcome is LayerOutcome.SKIPPED_ERROR]

    def render(self) -> str:
        return render_document(self.document, header=RUNTIME_HEADER)

    def warnings(self) -> list[str]:
        return [f"layer {d.layer_id} failed ({d.error_kind}): {d.detail}" for d in self.failed]


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


def base_document_for(
    engine_doc: Mapping[str, Any],
    catalog: ProfileCatalog,
    active_id: str | None,
    *,
    policy: MergePolicy = DEFAULT_POLICY,
) -> Document:
    """The active profile's content merged onto the global engine settings.

    A missing or non-base active profile yields the engine document alone.

    Raises:
        ParseError: The active profile's content is not a document.
    """
    active = catalog.get(active_id) if active_id else None
    if active is None or not active.kind.is_base:
        return deepcopy(dict(engine_doc))
    profile_doc = parse_document(active.content, source=f"profile {active.id}")
    return merge(engine_doc, profile_doc, policy=policy)


def final_patch_for(app: AppConfig) -> Document:
    """Operational keys the final-adjustment layer forces onto every build."""
    patch: Document = {"mixed-port": app.mixed_port}
    if app.socks_port is not None:
        patch["socks-port"] = app.socks_port
    if app.port is not None:
        patch["port"] = app.port
    patch["allow-lan"] = app.allow_lan
    patch["external-controller"] = app.external_controller
    patch["tun"] = {"enable": app.tun_enable, "stack": app.tun_stack}
    if app.interface_name:
        patch["interface-name"] = app.interface_name
    return patch


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


def build(
    catalog: ProfileCatalog,
    active_id: str | None,
    base_document: Mapping[str, Any],
    *,
    sandbox: ScriptSandbox,
    final_patch: Mapping[str, Any] | None = None,
    policy: MergePolicy = DEFAULT_POLICY,
    timeout: float | None = None,
    on_failure: Callable[[LayerDiagnostic], None] | None = None,
) -> PipelineResult:
    """Run every layer of *catalog*'s chain for *active_id* over *base_document*."""
    document: Document = deepcopy(dict(base_document))
    diagnostics: list[LayerDiagnostic] = []

    with trace_span("pipeline.build") as build_span:
        for layer in catalog.layer_chain(active_id, dict(final_patch or {})):
            if not layer.enabled:
                diagnostics.append(
                    LayerDiagnostic(layer.id, layer.band, LayerOutcome.SKIPPED_DISABLED)
                )
                continue

            with trace_span(f"layer:{layer.id}") as span:
                document, diagnostic = _apply(layer, document, sandbox, policy, timeout)
                if span is not None:
                    span.annotate("outcome", str(diagnostic.outcome))
            diagnostics.append(diagnostic)

            if diagnostic.outcome is LayerOutcome.SKIPPED_ERROR:
                log.warning(
                    "pipeline.layer_failed",
                    layer_id=diagnostic.layer_id,
                    band=diagnostic.band.label,
                    kind=diagnostic.error_kind,
                    detail=diagnostic.detail,
                )
                if on_failure is not None:
                    on_failure(diagnostic)

        if build_span is not None:
            build_span.annotate("layers", len(diagnostics))

    return PipelineResult(document=document, diagnostics=tuple(diagnostics))


def _apply(
    layer: MergeLayer | ScriptLayer | UnresolvedLayer | FinalAdjustLayer,
    document: Document,
    sandbox: ScriptSandbox,
    policy: MergePolicy,
    timeout: float | None,
) -> tuple[Document, LayerDiagnostic]:
    match layer:
        case MergeLayer(id=layer_id, band=band, source=source):
            try:
                fragment = parse_document(source, source=f"layer {layer_id}")
            except ParseError as exc:
                return document, _failed(layer_id, band, "parse", str(exc))
            return merge(document, fragment, policy=policy), _applied(layer_id, band)

        case ScriptLayer(id=layer_id, band=band, program=program):
            result = sandbox.run(program, document, timeout=timeout)
            if result.error is not None or result.document is None:
                kind = str(result.error.kind) if result.error else "runtime"
                detail = result.error.message if result.error else "script produced no document"
                return document, _failed(layer_id, band, kind, detail, result.logs)
            return result.document, _applied(layer_id, band, result.logs)

        case UnresolvedLayer(id=layer_id, band=band, reason=reason):
            return document, _failed(layer_id, band, "unresolved", reason)

        case FinalAdjustLayer(id=layer_id, band=band, patch=patch):
            return merge(document, patch, policy=policy), _applied(layer_id, band)


def _applied(layer_id: str, band: Band, logs: tuple[str, ...] = ()) -> LayerDiagnostic:
    return LayerDiagnostic(layer_id, band, LayerOutcome.APPLIED, logs=logs)


def _failed(
    layer_id: str,
    band: Band,
    kind: str,
    detail: str,
    logs: tuple[str, ...] = (),
) -> LayerDiagnostic:
    return LayerDiagnostic(
        layer_id, band, LayerOutcome.SKIPPED_ERROR, error_kind=kind, detail=detail, logs=logs
    )
