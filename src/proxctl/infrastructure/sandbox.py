"""Script sandbox — time-bounded, capability-limited document transforms.

A script profile is a Jinja2 program that defines a ``main`` macro::

    {% macro main(config) -%}
    {%- do config.rules.insert(0, "DOMAIN-SUFFIX,example.com,DIRECT") -%}
    {{- log("pinned example.com") -}}
    {{ config | to_yaml }}
    {%- endmacro %}

The sandbox calls ``main(config)`` with a private copy of the current
document and parses the rendered output as the new document.

Isolation comes from :class:`jinja2.sandbox.SandboxedEnvironment`: no
loader (no ``include``/``import``), no ambient globals beyond a few pure
helpers, and unsafe attribute access is refused. Every sandboxed call,
lookup, intercepted operator, ``range`` step and ``for`` loop step checks a
deadline, so an expired program stops at its next step. The program runs
on a daemon thread and the caller waits at most ``timeout`` seconds for it.

INVARIANT: ``run`` never raises for a misbehaving program. Failures come
back as :class:`ScriptError` values so one broken layer cannot abort a
pipeline build.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Iterable, Iterator, Sized
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from copy import deepcopy
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from jinja2 import TemplateSyntaxError, nodes
from jinja2.sandbox import MAX_RANGE, SandboxedEnvironment, SecurityError

from proxctl.domain.documents import Document, ParseError, parse_value, render_document
from proxctl.domain.merge import DEFAULT_POLICY, MergePolicy, merge

logger = logging.getLogger(__name__)

MAIN_MACRO = "main"
LOOP_GUARD = "__loop_guard"
MAX_POWER = 100
MAX_LOG_LINES = 200


class ScriptErrorKind(StrEnum):
    TIMEOUT = "timeout"
    RUNTIME = "runtime"


@dataclass(frozen=True)
class ScriptError:
    """Why a script layer produced no document."""

    kind: ScriptErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


@dataclass(frozen=True)
class ScriptResult:
    """Outcome of one sandbox invocation."""

    document: Document | None = None
    error: ScriptError | None = None
    logs: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.error is None


class _DeadlineExceeded(RuntimeError):
    """Raised inside the sandbox once the time budget is spent."""


class _Deadline:
    def __init__(self, seconds: float) -> None:
        self._at = time.monotonic() + seconds
        self._expired = threading.Event()

    def expire(self) -> None:
        self._expired.set()

    def check(self) -> None:
        if self._expired.is_set() or time.monotonic() > self._at:
            self._expired.set()
            raise _DeadlineExceeded("script exceeded its time budget")


class _BoundedSandbox(SandboxedEnvironment):
    """Sandboxed environment that enforces a deadline on every hook."""

    intercepted_binops = frozenset({"*", "**"})

    def __init__(self, deadline: _Deadline) -> None:
        super().__init__(
            extensions=["jinja2.ext.do"],
            autoescape=False,
            keep_trailing_newline=True,
        )
        self._deadline = deadline

    def call(self, context: Any, obj: Any, /, *args: Any, **kwargs: Any) -> Any:
        self._deadline.check()
        return super().call(context, obj, *args, **kwargs)

    def getattr(self, obj: Any, attribute: str) -> Any:
        self._deadline.check()
        return super().getattr(obj, attribute)

    def getitem(self, obj: Any, argument: Any) -> Any:
        self._deadline.check()
        return super().getitem(obj, argument)

    def call_binop(self, context: Any, operator: str, left: Any, right: Any) -> Any:
        self._deadline.check()
        if operator == "**" and isinstance(right, (int, float)) and abs(right) > MAX_POWER:
            msg = f"exponent {right} exceeds the sandbox limit of {MAX_POWER}"
            raise SecurityError(msg)
        if operator == "*":
            _guard_repeat(left, right)
            _guard_repeat(right, left)
        return super().call_binop(context, operator, left, right)


def _guard_repeat(seq: Any, count: Any) -> None:
    if isinstance(seq, Sized) and not isinstance(seq, dict) and isinstance(count, int):
        if len(seq) * count > MAX_RANGE:
            msg = f"sequence repetition larger than {MAX_RANGE} items is not allowed"
            raise SecurityError(msg)


def _build_environment(
    deadline: _Deadline,
    logs: list[str],
    policy: MergePolicy,
) -> _BoundedSandbox:
    env = _BoundedSandbox(deadline)
    for name in ("lipsum", "cycler", "joiner"):
        env.globals.pop(name, None)

    def bounded_range(*args: int) -> Iterator[int]:
        rng = range(*args)
        if len(rng) > MAX_RANGE:
            msg = f"range too big (maximum {MAX_RANGE} items)"
            raise SecurityError(msg)
        for value in rng:
            deadline.check()
            yield value

    def loop_guard(items: Iterable[Any]) -> Iterator[Any]:
        for item in items:
            deadline.check()
            yield item

    def log(*parts: Any) -> str:
        if len(logs) < MAX_LOG_LINES:
            logs.append(" ".join(str(p) for p in parts))
        return ""

    def to_yaml(value: Any) -> str:
        if isinstance(value, dict):
            return render_document(value)
        # JSON is valid flow-style YAML for non-mapping values
        return json.dumps(value, ensure_ascii=False)

    def merge_filter(base: Any, patch: Any) -> Document:
        if not isinstance(base, dict) or not isinstance(patch, dict):
            msg = "merge expects two mappings"
            raise TypeError(msg)
        return merge(base, patch, policy=policy)

    env.globals["range"] = bounded_range
    env.globals[LOOP_GUARD] = loop_guard
    env.globals["log"] = log
    env.filters["to_yaml"] = to_yaml
    env.filters["merge"] = merge_filter
    return env


def _find_main(template_ast: nodes.Template) -> nodes.Macro | None:
    for macro in template_ast.find_all(nodes.Macro):
        if macro.name == MAIN_MACRO:
            return macro
    return None


def _guard_loops(env: SandboxedEnvironment, tree: nodes.Template) -> nodes.Template:
    """Route every ``for`` iterable through the deadline-checking loop guard."""
    for loop in list(tree.find_all(nodes.For)):
        guarded = nodes.Call(
            nodes.Name(LOOP_GUARD, "load"), [loop.iter], [], None, None, lineno=loop.lineno
        )
        loop.iter = guarded.set_environment(env)
    return tree


class ScriptSandbox:
    """Runs user scripts against documents, one fresh environment per run."""

    def __init__(
        self,
        *,
        timeout: float = 3.0,
        policy: MergePolicy = DEFAULT_POLICY,
    ) -> None:
        self._timeout = timeout
        self._policy = policy

    @property
    def timeout(self) -> float:
        return self._timeout

    def check(self, program: str) -> ScriptError | None:
        """Validate syntax and the ``main`` macro without executing anything."""
        env = _build_environment(_Deadline(self._timeout), [], self._policy)
        try:
            tree = env.parse(program)
        except TemplateSyntaxError as exc:
            return ScriptError(
                ScriptErrorKind.RUNTIME,
                f"syntax error on line {exc.lineno}: {exc.message}",
            )
        macro = _find_main(tree)
        if macro is None:
            return ScriptError(
                ScriptErrorKind.RUNTIME,
                f"script must define a '{MAIN_MACRO}' macro",
            )
        if len(macro.args) != 1:
            return ScriptError(
                ScriptErrorKind.RUNTIME,
                f"'{MAIN_MACRO}' must take exactly one argument, got {len(macro.args)}",
            )
        return None

    def run(
        self,
        program: str,
        document: Document,
        *,
        timeout: float | None = None,
    ) -> ScriptResult:
        """Execute *program* against a copy of *document*."""
        budget = self._timeout if timeout is None else timeout
        problem = self.check(program)
        if problem is not None:
            return ScriptResult(error=problem)

        logs: list[str] = []
        deadline = _Deadline(budget)
        env = _build_environment(deadline, logs, self._policy)
        tree = _guard_loops(env, env.parse(program))
        future: Future[str] = Future()
        worker = threading.Thread(
            target=_evaluate,
            args=(env, tree, deepcopy(document), future),
            name="proxctl-script",
            daemon=True,
        )
        worker.start()
        try:
            output = future.result(timeout=budget)
        except (FutureTimeout, _DeadlineExceeded):
            deadline.expire()
            logger.debug("Script timed out after %.2fs", budget)
            return ScriptResult(
                error=ScriptError(ScriptErrorKind.TIMEOUT, f"script exceeded {budget:g}s"),
                logs=tuple(logs),
            )
        except Exception as exc:  # user programs may raise anything
            return ScriptResult(
                error=ScriptError(ScriptErrorKind.RUNTIME, f"{type(exc).__name__}: {exc}"),
                logs=tuple(logs),
            )

        return _to_result(output, tuple(logs))


def _evaluate(
    env: _BoundedSandbox, tree: nodes.Template, config: Document, future: Future[str]
) -> None:
    try:
        module = env.from_string(tree).make_module()
        future.set_result(str(getattr(module, MAIN_MACRO)(config)))
    except BaseException as exc:
        future.set_exception(exc)


def _to_result(output: str, logs: tuple[str, ...]) -> ScriptResult:
    try:
        value = parse_value(output) if output.strip() else None
    except ParseError as exc:
        return _runtime(f"script returned malformed output: {exc}", logs)
    if value is None:
        return _runtime("script returned nothing", logs)
    if not isinstance(value, dict):
        return _runtime(f"script returned a non-document value ({type(value).__name__})", logs)
    return ScriptResult(document=value, logs=logs)


def _runtime(message: str, logs: tuple[str, ...]) -> ScriptResult:
    return ScriptResult(error=ScriptError(ScriptErrorKind.RUNTIME, message), logs=logs)
