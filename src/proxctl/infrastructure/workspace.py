"""Workspace — the single dependency injected into every service.

One Workspace per app home. It owns the three configuration domains
(``engine``, ``app``, ``profiles``), the shared :class:`EngineLane`, the
script sandbox, and the notification bus, and wires each domain's
validator, persister and listeners.

Every domain renders through the same path: base document (engine
settings + active profile) → enhancement pipeline → final adjustment from
``app`` → schema check → engine ``check``. A commit to any domain therefore
re-derives and pushes the whole runtime document.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from proxctl.config.models import AppConfig, RuntimeDocumentSchema
from proxctl.domain.documents import Document, parse_document, render_document
from proxctl.domain.merge import merge
from proxctl.domain.profiles import ProfileCatalog, ProfileKind
from proxctl.infrastructure.database.engine import STATE_DIR, init_database
from proxctl.infrastructure.engine import EngineControl, Rendering, SidecarEngine
from proxctl.infrastructure.filesystem import APP_FILE, ENGINE_FILE, atomic_write, read_text
from proxctl.infrastructure.registry import CatalogStore
from proxctl.infrastructure.sandbox import ScriptSandbox
from proxctl.infrastructure.store import ConfigDomain, EngineLane, default_patcher

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from proxctl.config.settings import ProxSettings
    from proxctl.plugins.event_bus import EventBus
    from proxctl.services.enhance import LayerDiagnostic, PipelineResult

logger = logging.getLogger(__name__)
log = structlog.get_logger("proxctl.workspace")

DEFAULT_ENGINE_DOCUMENT: Document = {
    "mode": "rule",
    "log-level": "info",
    "ipv6": False,
    "unified-delay": True,
}

ENGINE_HEADER = "proxctl engine settings (global defaults under every profile)"
APP_HEADER = "proxctl app settings (applied last, after every profile layer)"


class Workspace:
    """Configuration domains and collaborators for one app home.

    Parameters:
        settings: Resolved settings; ``settings.home`` is the app home.
        engine: Engine-control collaborator. Defaults to a
            :class:`SidecarEngine` built from ``[engine]`` settings.
    """

    def __init__(self, settings: ProxSettings, *, engine: EngineControl | None = None) -> None:
        self._settings = settings
        self._home = settings.home
        self._home.mkdir(parents=True, exist_ok=True)
        self._policy = settings.merge_policy
        self._db: Engine | None = None
        self._event_bus: EventBus | None = None
        self._last_build: PipelineResult | None = None

        self._engine = engine or SidecarEngine(
            self._home,
            binary_dir=Path(settings.engine.binary_dir) if settings.engine.binary_dir else None,
            startup_grace=settings.engine.startup_grace,
            push_retries=settings.engine.push_retries,
            check_timeout=settings.engine.check_timeout,
        )
        self._sandbox = ScriptSandbox(timeout=settings.scripts.timeout, policy=self._policy)
        self._catalog_store = CatalogStore(self._home)

        app = self._load_app()
        self._lane = EngineLane(self._engine, accepted=self._load_accepted(app.core))

        self.engine_settings: ConfigDomain[Document] = ConfigDomain(
            "engine",
            self._load_engine_document(),
            validator=lambda doc: self._validate(engine_doc=doc),
            persister=self._persist_engine_document,
            patcher=self._patch,
            lane=self._lane,
        )
        self.app: ConfigDomain[AppConfig] = ConfigDomain(
            "app",
            app,
            validator=lambda value: self._validate(app=value),
            persister=self._persist_app,
            patcher=self._patch,
            lane=self._lane,
        )
        self.profiles: ConfigDomain[ProfileCatalog] = ConfigDomain(
            "profiles",
            self._catalog_store.load(),
            validator=lambda catalog: self._validate(catalog=catalog),
            persister=self._catalog_store.save,
            lane=self._lane,
        )
        for domain in self.domains.values():
            domain.add_listener(self._on_committed)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def home(self) -> Path:
        return self._home

    @property
    def settings(self) -> ProxSettings:
        return self._settings

    @property
    def engine(self) -> EngineControl:
        return self._engine

    @property
    def lane(self) -> EngineLane:
        return self._lane

    @property
    def sandbox(self) -> ScriptSandbox:
        return self._sandbox

    @property
    def catalog_store(self) -> CatalogStore:
        return self._catalog_store

    @property
    def domains(self) -> dict[str, ConfigDomain[Any]]:
        return {
            "engine": self.engine_settings,
            "app": self.app,
            "profiles": self.profiles,
        }

    @property
    def last_build(self) -> PipelineResult | None:
        """The most recent pipeline result produced by a commit or preview."""
        return self._last_build

    @property
    def event_bus(self) -> EventBus | None:
        return self._event_bus

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def build(
        self,
        *,
        engine_doc: Document | None = None,
        catalog: ProfileCatalog | None = None,
        app: AppConfig | None = None,
    ) -> PipelineResult:
        """Run the enhancement pipeline. Omitted inputs use committed values."""
        from proxctl.services.enhance import base_document_for, build, final_patch_for

        engine_doc = self.engine_settings.latest() if engine_doc is None else engine_doc
        catalog = self.profiles.latest() if catalog is None else catalog
        app = self.app.latest() if app is None else app

        base = base_document_for(engine_doc, catalog, catalog.current, policy=self._policy)
        result = build(
            catalog,
            catalog.current,
            base,
            sandbox=self._sandbox,
            final_patch=final_patch_for(app),
            policy=self._policy,
            on_failure=self._on_layer_failed,
        )
        self._last_build = result
        return result

    def render(self, **inputs: Any) -> Rendering:
        """Build, schema-check, and wrap the result for the engine.

        Raises:
            ValueError: Profile content does not parse, or the result fails
                the runtime schema (pydantic ``ValidationError``).
        """
        app: AppConfig = inputs.get("app") or self.app.latest()
        result = self.build(**inputs)
        RuntimeDocumentSchema.model_validate(result.document)
        return Rendering(text=result.render(), core=app.core)

    def render_default(self) -> Rendering:
        """Engine settings with the app settings on top, and no profile layers.

        Raises:
            ValueError: The result fails the runtime schema.
        """
        from proxctl.services.enhance import RUNTIME_HEADER, final_patch_for

        app = self.app.latest()
        document = merge(self.engine_settings.latest(), final_patch_for(app), policy=self._policy)
        RuntimeDocumentSchema.model_validate(document)
        return Rendering(text=render_document(document, header=RUNTIME_HEADER), core=app.core)

    def _validate(self, **inputs: Any) -> Rendering:
        catalog: ProfileCatalog | None = inputs.get("catalog")
        if catalog is not None:
            _check_catalog(catalog)
        rendering = self.render(**inputs)
        self._engine.check(rendering)
        return rendering

    def _patch(self, value: Any, edits: Any) -> Any:
        return default_patcher(value, edits, policy=self._policy)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def init_event_bus(self, *, sync: bool = False) -> None:
        """Create the plugin manager and WAL-backed event bus.

        Registers entry-point plugins, local plugins from
        ``{home}/.proxctl/plugins/``, and the built-in journal.
        """
        from proxctl.plugins.builtins.journal import JournalPlugin
        from proxctl.plugins.event_bus import EventBus
        from proxctl.plugins.manager import PluginManager

        self._db = init_database(self._home)
        pm = PluginManager()
        pm.discover_and_load(local_dir=self._home / STATE_DIR / "plugins")
        pm.register_plugin(JournalPlugin(self._home), name="journal-builtin")
        self._event_bus = EventBus(self._db, pm, sync=sync)

    def notify(self, hook_name: str, **payload: Any) -> None:
        """Fire-and-forget notification. No-op without an event bus."""
        if self._event_bus is None:
            return
        try:
            self._event_bus.dispatch(hook_name, payload)
        except Exception:
            logger.warning("Event dispatch failed for %s", hook_name, exc_info=True)

    def _on_committed(self, domain: str, _value: Any) -> None:
        self.notify("config_updated", domain=domain)

    def _on_layer_failed(self, diagnostic: LayerDiagnostic) -> None:
        self.notify(
            "layer_failed",
            layer_id=diagnostic.layer_id,
            kind=diagnostic.error_kind or "runtime",
            message=diagnostic.detail or "",
        )

    def close(self) -> None:
        """Drain queued commits and pending notifications."""
        for domain in self.domains.values():
            domain.shutdown()
        if self._event_bus is not None:
            self._event_bus.shutdown()
        if self._db is not None:
            self._db.dispose()

    # ------------------------------------------------------------------
    # Loading and persistence
    # ------------------------------------------------------------------

    def _load_engine_document(self) -> Document:
        path = self._home / ENGINE_FILE
        raw = read_text(path)
        if raw is None:
            return dict(DEFAULT_ENGINE_DOCUMENT)
        return parse_document(raw, source=str(path))

    def _persist_engine_document(self, doc: Document) -> None:
        atomic_write(self._home / ENGINE_FILE, render_document(doc, header=ENGINE_HEADER))

    def _load_app(self) -> AppConfig:
        path = self._home / APP_FILE
        raw = read_text(path)
        if raw is None:
            return AppConfig(core=self._settings.engine.core)
        return AppConfig.model_validate(parse_document(raw, source=str(path)))

    def _persist_app(self, app: AppConfig) -> None:
        atomic_write(
            self._home / APP_FILE,
            render_document(app.model_dump(mode="json"), header=APP_HEADER),
        )

    def _load_accepted(self, core: str) -> Rendering | None:
        """Seed the lane with the runtime file left by a previous run."""
        runtime_path = getattr(self._engine, "runtime_path", None)
        if runtime_path is None:
            return None
        text = read_text(runtime_path)
        return Rendering(text=text, core=core) if text else None


def _check_catalog(catalog: ProfileCatalog) -> None:
    """Every document-kind item must hold a parseable mapping.

    Raises:
        ParseError: An item's content is malformed.
    """
    for item in catalog.items:
        if item.kind is not ProfileKind.SCRIPT:
            parse_document(item.content, source=f"profile {item.id}")
