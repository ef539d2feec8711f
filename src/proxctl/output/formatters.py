"""Output-mode selection for ServiceResult.

``--json`` emits the serialized result, ``-q`` a minimal line (or ids),
and the default is the Rich rendering from :mod:`proxctl.output.renderers`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from proxctl.output.renderers import render_quiet, render_result

if TYPE_CHECKING:
    from proxctl.services.result import ServiceResult


@dataclass(frozen=True)
class OutputSettings:
    json_output: bool = False
    quiet: bool = False
    verbose: bool = False


def format_result(result: ServiceResult, *, settings: OutputSettings | None = None) -> str:
    settings = settings or OutputSettings()
    if settings.json_output:
        return result.model_dump_json(indent=2)
    if settings.quiet:
        return render_quiet(result)
    return render_result(result, verbose=settings.verbose)
