"""Draft/Commit store — fork, validate, persist, push, swap.

Each :class:`ConfigDomain` holds exactly one committed value and at most
one open :class:`DraftHandle`. A commit runs five steps:

1. validate the draft (the validator returns the engine rendering, or
   ``None`` for values the engine never sees)
2. on failure raise :class:`InvalidConfig`; the draft stays open
3. persist the new value
4. push the rendering to the engine through the shared :class:`EngineLane`
5. if the engine rejects it: persist the old value again, re-push the last
   accepted rendering once, raise :class:`RejectedByEngine`. A failed disk
   write rolls back the same way and raises a plain :class:`CommitError`

Only after step 4 succeeds does ``latest()`` return the new value.

INVARIANT: readers never observe a partially applied draft. The committed
value is replaced by a single reference swap and always handed out as a
deep copy.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from copy import deepcopy
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import structlog
from pydantic import BaseModel

from proxctl.domain.merge import DEFAULT_POLICY, MergePolicy, merge
from proxctl.infrastructure.engine import EngineError, Rendering

if TYPE_CHECKING:
    from proxctl.infrastructure.engine import EngineControl

logger = logging.getLogger(__name__)
log = structlog.get_logger("proxctl.store")

T = TypeVar("T")

Validator = Callable[[T], Rendering | None]
Persister = Callable[[T], None]
Patcher = Callable[[T, Mapping[str, Any]], T]
Listener = Callable[[str, T], None]
Edits = Mapping[str, Any] | Callable[[T], T]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """Base class for store failures."""


class DraftClosed(StoreError):
    """The handle was already committed or discarded."""


class CommitError(StoreError):
    """A draft could not become the committed value."""

    code = "COMMIT_FAILED"

    def __init__(self, domain: str, message: str, *, detail: str | None = None) -> None:
        super().__init__(f"[{domain}] {message}")
        self.domain = domain
        self.message = message
        self.detail = detail


class InvalidConfig(CommitError):
    code = "INVALID_CONFIG"


class DraftBusy(CommitError):
    code = "DRAFT_BUSY"


class RejectedByEngine(CommitError):
    code = "REJECTED_BY_ENGINE"


class CommitSuperseded(CommitError):
    code = "SUPERSEDED"


# ---------------------------------------------------------------------------
# Default patchers
# ---------------------------------------------------------------------------


def default_patcher(
    value: Any,
    edits: Mapping[str, Any],
    *,
    policy: MergePolicy = DEFAULT_POLICY,
) -> Any:
    """Merge *edits* into documents, or into a model's fields (re-validated).

    *policy* decides which list paths concatenate instead of being replaced.
    """
    if isinstance(value, BaseModel):
        data = merge(value.model_dump(mode="python"), edits, policy=policy)
        return type(value).model_validate(data)
    if isinstance(value, dict):
        return merge(value, edits, policy=policy)
    msg = f"Cannot apply mapping edits to {type(value).__name__}"
    raise TypeError(msg)


# ---------------------------------------------------------------------------
# EngineLane: serialized persist/push across domains
# ---------------------------------------------------------------------------


class EngineLane:
    """Serializes engine pushes and remembers the last accepted rendering.

    Validation happens outside the lane. ``generation`` lets a domain
    detect that another domain's commit landed in between, in which case
    it re-renders inside the lane before pushing.
    """

    def __init__(self, engine: EngineControl, *, accepted: Rendering | None = None) -> None:
        self._engine = engine
        self._lock = threading.RLock()
        self._generation = 0
        self._accepted = accepted

    @property
    def engine(self) -> EngineControl:
        return self._engine

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def accepted(self) -> Rendering | None:
        """The rendering the engine last accepted (None before the first push)."""
        return self._accepted

    @contextmanager
    def held(self) -> Iterator[None]:
        with self._lock:
            yield

    def push(self, rendering: Rendering) -> None:
        with self._lock:
            self._engine.push(rendering)
            self._accepted = rendering
            self._generation += 1

    def restore(self, rendering: Rendering) -> bool:
        """Re-push a known-good rendering. Returns False if the engine refused it too."""
        with self._lock:
            try:
                self._engine.push(rendering)
            except (EngineError, OSError):
                logger.error("Engine refused the restored configuration", exc_info=True)
                return False
            self._accepted = rendering
            return True


# ---------------------------------------------------------------------------
# DraftHandle
# ---------------------------------------------------------------------------


class DraftHandle(Generic[T]):
    """Mutable working copy forked from a committed value.

    Usable as a context manager; an uncommitted draft is discarded on exit.
    """

    def __init__(self, domain: ConfigDomain[T], base: T) -> None:
        self._domain = domain
        self._base = deepcopy(base)
        self._value = deepcopy(base)
        self._open = True

    def __enter__(self) -> DraftHandle[T]:
        return self

    def __exit__(self, *_exc: object) -> None:
        if self._open:
            self.discard()

    @property
    def domain(self) -> str:
        return self._domain.name

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def base(self) -> T:
        """The committed value this draft was forked from."""
        return deepcopy(self._base)

    @property
    def value(self) -> T:
        return deepcopy(self._value)

    @property
    def dirty(self) -> bool:
        return self._value != self._base

    def patch(self, edits: Edits[T]) -> DraftHandle[T]:
        """Apply incremental edits in memory. The draft is unchanged if they fail."""
        self._ensure_open()
        current = deepcopy(self._value)
        try:
            if callable(edits):
                updated = edits(current)
            else:
                updated = self._domain.patcher(current, edits)
        except (ValueError, TypeError, KeyError) as exc:
            raise InvalidConfig(
                self.domain, "edits could not be applied", detail=str(exc)
            ) from exc
        self._value = updated
        return self

    def commit(self, *, cancelled: Callable[[], bool] | None = None) -> T:
        """Validate, persist, push and swap. Returns the new committed value."""
        self._ensure_open()
        return self._domain._commit(self, cancelled)

    def discard(self) -> None:
        self._domain._release(self)

    def _ensure_open(self) -> None:
        if not self._open:
            msg = f"Draft for domain {self.domain!r} is closed"
            raise DraftClosed(msg)

    def _close(self) -> None:
        self._open = False


# ---------------------------------------------------------------------------
# ConfigDomain
# ---------------------------------------------------------------------------


class ConfigDomain(Generic[T]):
    """One configuration namespace with a single-writer commit lane."""

    def __init__(
        self,
        name: str,
        initial: T,
        *,
        validator: Validator[T] | None = None,
        persister: Persister[T] | None = None,
        patcher: Patcher[T] | None = None,
        lane: EngineLane | None = None,
    ) -> None:
        self.name = name
        self._committed: T = deepcopy(initial)
        self._validator = validator
        self._persister = persister
        self._patcher: Patcher[T] = patcher or default_patcher
        self._lane = lane
        self._commit_lock = threading.Lock()
        self._gate = threading.Condition()
        self._draft: DraftHandle[T] | None = None
        self._listeners: list[Listener[T]] = []
        self._executor: ThreadPoolExecutor | None = None
        self._coalesce_token = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def latest(self) -> T:
        """Snapshot of the committed value. Never blocks."""
        return deepcopy(self._committed)

    @property
    def patcher(self) -> Patcher[T]:
        return self._patcher

    @property
    def has_draft(self) -> bool:
        return self._draft is not None

    def draft(self, *, block: bool = False, timeout: float | None = None) -> DraftHandle[T]:
        """Fork a draft from the committed value.

        Raises:
            DraftBusy: A draft is already open (immediately, or after
                *timeout* seconds when *block* is set).
        """
        with self._gate:
            if self._draft is not None:
                if not block:
                    raise DraftBusy(self.name, "another draft is already open")
                if not self._gate.wait_for(lambda: self._draft is None, timeout=timeout):
                    raise DraftBusy(self.name, f"no draft became available within {timeout}s")
            handle = DraftHandle(self, self._committed)
            self._draft = handle
            return handle

    def add_listener(self, listener: Listener[T]) -> None:
        """Call *listener(domain, value)* after every successful commit."""
        self._listeners.append(listener)

    def submit(
        self,
        edits: Edits[T] | None = None,
        *,
        coalesce: bool = False,
    ) -> Future[T]:
        """Queue draft → patch → commit on this domain's serialized worker.

        Coalescing requests (rebuild + recommit) are cancelled when a newer
        coalescing request arrives before they reach the engine push.
        """
        token: int | None = None
        if coalesce:
            with self._gate:
                self._coalesce_token += 1
                token = self._coalesce_token
        return self._worker().submit(self._run_request, edits, token)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _worker(self) -> ThreadPoolExecutor:
        with self._gate:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1,
                    thread_name_prefix=f"proxctl-{self.name}",
                )
            return self._executor

    def _run_request(self, edits: Edits[T] | None, token: int | None) -> T:
        def superseded() -> bool:
            return token is not None and token != self._coalesce_token

        if superseded():
            raise CommitSuperseded(self.name, "a newer request replaced this one")
        handle = self.draft(block=True)
        try:
            if edits is not None:
                handle.patch(edits)
            return handle.commit(cancelled=superseded)
        finally:
            if handle.is_open:
                handle.discard()

    def _release(self, handle: DraftHandle[T]) -> None:
        with self._gate:
            handle._close()
            if self._draft is handle:
                self._draft = None
                self._gate.notify_all()

    def _validate(self, candidate: T) -> Rendering | None:
        if self._validator is None:
            return None
        try:
            return self._validator(candidate)
        except InvalidConfig:
            raise
        except (ValueError, EngineError) as exc:
            raise InvalidConfig(self.name, "validation failed", detail=str(exc)) from exc

    def _persist(self, value: T) -> None:
        if self._persister is not None:
            self._persister(value)

    def _commit(
        self,
        handle: DraftHandle[T],
        cancelled: Callable[[], bool] | None,
    ) -> T:
        with self._commit_lock:
            if self._draft is not handle:
                msg = f"Draft for domain {self.name!r} is no longer current"
                raise DraftClosed(msg)
            candidate = handle.value
            lane = self._lane
            generation = lane.generation if lane is not None else 0
            rendering = self._validate(candidate)

            if lane is None or rendering is None:
                self._abort_if_cancelled(handle, cancelled)
                try:
                    self._persist(candidate)
                except OSError as exc:
                    raise CommitError(
                        self.name, "configuration could not be saved", detail=str(exc)
                    ) from exc
                self._swap(handle, candidate)
            else:
                with lane.held():
                    if lane.generation != generation:
                        log.debug("store.revalidate", domain=self.name)
                        rendering = self._validate(candidate)
                    self._abort_if_cancelled(handle, cancelled)
                    self._push(handle, candidate, rendering, lane)

        log.info("store.committed", domain=self.name)
        for listener in self._listeners:
            try:
                listener(self.name, deepcopy(candidate))
            except Exception:
                logger.warning("Commit listener failed for %s", self.name, exc_info=True)
        return deepcopy(candidate)

    def _push(
        self,
        handle: DraftHandle[T],
        candidate: T,
        rendering: Rendering | None,
        lane: EngineLane,
    ) -> None:
        previous = self._committed
        pushing = False
        try:
            self._persist(candidate)
            if rendering is not None:
                pushing = True
                lane.push(rendering)
        except (EngineError, OSError) as exc:
            log.warning("store.rejected", domain=self.name, error=str(exc))
            restored = self._roll_back(previous, lane, repush=pushing)
            self._release(handle)
            detail = str(exc)
            if not restored:
                detail += " (restoring the previous configuration also failed)"
            if isinstance(exc, EngineError):
                raise RejectedByEngine(
                    self.name, "engine rejected the configuration", detail=detail
                ) from exc
            raise CommitError(
                self.name, "configuration could not be saved or applied", detail=detail
            ) from exc
        self._swap(handle, candidate)

    def _roll_back(self, previous: T, lane: EngineLane, *, repush: bool) -> bool:
        """Put the previous value back on disk and, if a push was tried, in the engine."""
        saved = True
        try:
            self._persist(previous)
        except OSError:
            logger.error("Could not re-save the previous %s value", self.name, exc_info=True)
            saved = False
        if repush:
            return self._restore(previous, lane) and saved
        return saved

    def _restore(self, previous: T, lane: EngineLane) -> bool:
        rendering = lane.accepted
        if rendering is None:
            try:
                rendering = self._validate(previous)
            except InvalidConfig:
                logger.error("Previous %s value no longer renders", self.name, exc_info=True)
                return False
        if rendering is None:
            return True
        return lane.restore(rendering)

    def _abort_if_cancelled(
        self,
        handle: DraftHandle[T],
        cancelled: Callable[[], bool] | None,
    ) -> None:
        if cancelled is not None and cancelled():
            self._release(handle)
            raise CommitSuperseded(self.name, "a newer request replaced this one")

    def _swap(self, handle: DraftHandle[T], candidate: T) -> None:
        self._committed = candidate
        self._release(handle)
