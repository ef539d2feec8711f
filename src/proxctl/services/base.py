"""BaseService — shared foundation for proxctl services.

Every service receives a :class:`Workspace` at construction time. State
changes go through the workspace's configuration domains; services turn
store exceptions into :class:`ServiceResult` failures.
"""

from __future__ import annotations

import logging
from concurrent.futures import TimeoutError as FutureTimeout
from typing import TYPE_CHECKING, Any, TypeVar

from proxctl.infrastructure.store import CommitError
from proxctl.services.result import ServiceResult

if TYPE_CHECKING:
    from proxctl.infrastructure.store import ConfigDomain, Edits
    from proxctl.infrastructure.workspace import Workspace

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Seconds a CLI-driven commit waits for the domain queue.
COMMIT_TIMEOUT = 120.0


class CommitFailed(Exception):
    """Carries the ServiceResult for a failed commit out of a helper."""

    def __init__(self, result: ServiceResult) -> None:
        super().__init__(result.error.message if result.error else result.op)
        self.result = result


class BaseService:
    """Base for service-layer classes.

    Usage::

        class ProfileService(BaseService):
            def activate(self, profile_id: str) -> ServiceResult:
                catalog = self._commit(self._ws.profiles, op, lambda c: c.activate(profile_id))
                ...
    """

    def __init__(self, workspace: Workspace) -> None:
        self._ws = workspace

    def _commit(
        self,
        domain: ConfigDomain[T],
        op: str,
        edits: Edits[T] | None = None,
        *,
        coalesce: bool = False,
    ) -> T:
        """Queue a commit on *domain* and wait for it.

        Raises:
            CommitFailed: The store refused the change, or it did not finish
                within ``COMMIT_TIMEOUT``; ``.result`` holds the failure
                ServiceResult (with pipeline warnings, if any).
        """
        future = domain.submit(edits, coalesce=coalesce)
        try:
            return future.result(timeout=COMMIT_TIMEOUT)
        except FutureTimeout as exc:
            future.cancel()
            message = f"commit did not finish within {COMMIT_TIMEOUT:g}s"
            logger.warning("%s on domain %s", message, domain.name)
            self._ws.notify("commit_rejected", domain=domain.name, code="TIMEOUT", message=message)
            raise CommitFailed(
                ServiceResult.fail(op, "TIMEOUT", message, domain=domain.name)
            ) from exc
        except CommitError as exc:
            self._ws.notify(
                "commit_rejected",
                domain=exc.domain,
                code=exc.code,
                message=exc.detail or exc.message,
            )
            raise CommitFailed(
                ServiceResult.fail(
                    op,
                    exc.code,
                    exc.message,
                    warnings=self._build_warnings(),
                    domain=exc.domain,
                    reason=exc.detail,
                )
            ) from exc

    def _build_warnings(self) -> list[str]:
        """Layer failures from the most recent pipeline build."""
        build = self._ws.last_build
        return build.warnings() if build is not None else []

    def _success(self, op: str, data: dict[str, Any], *, rendered: bool = True) -> ServiceResult:
        warnings = self._build_warnings() if rendered else []
        return ServiceResult(ok=True, op=op, data=data, warnings=warnings)
