"""Isolated evaluator for user-authored ``code`` and ``filter`` scripts.

Scripts are Python compiled with RestrictedPython and executed in a separate
process. Only ``input``/``$input``, ``vars``/``$vars``, ``nodes``/``$nodes``
(code) or ``item``/``$item`` (filter) are exposed, plus a small set of pure
builtins. There are no imports, no dunder access, and no file, process or
network primitives.

Budgets are enforced by the host:
- the child arms a SIGALRM interval timer before evaluating user code;
- the parent waits at most budget + start-up grace, then kills the child.
A script that swallows the alarm still dies when the parent kills it.
"""

import asyncio
import json
import multiprocessing
import operator
import os
import re
import signal
import sys
import textwrap
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Optional

from RestrictedPython import compile_restricted, limited_builtins, safe_builtins, PrintCollector
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)

from core.config import Settings
from core.logging import get_logger

logger = get_logger(__name__)

# $input / $vars / $nodes / $item -> plain Python names
TOKEN_PATTERN = re.compile(r'\$(input|vars|nodes|item)\b')

START_GRACE_SECONDS = 1.0


class SandboxTimeout(Exception):
    """Raised inside the child when the interval timer fires."""


@dataclass
class SandboxResult:
    ok: bool
    value: Any = None
    error: Optional[str] = None
    timed_out: bool = False


@dataclass
class FilterVerdicts:
    """Per-item filter results; ``None`` marks an item whose evaluation failed."""
    verdicts: List[Optional[bool]] = field(default_factory=list)
    error: Optional[str] = None
    timed_out: bool = False

    @property
    def error_count(self) -> int:
        return sum(1 for v in self.verdicts if v is None)


# =============================================================================
# RESTRICTED GLOBALS
# =============================================================================

class _SafeJson:
    """Read-only json facade for scripts."""

    @staticmethod
    def loads(text):
        return json.loads(text)

    @staticmethod
    def dumps(value, indent=None, sort_keys=False):
        return json.dumps(value, indent=indent, sort_keys=sort_keys, default=str)


_INPLACE_OPERATORS = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "|=": operator.ior,
    "&=": operator.iand,
}


def _inplacevar(op: str, target: Any, value: Any) -> Any:
    handler = _INPLACE_OPERATORS.get(op)
    if handler is None:
        raise SyntaxError(f"Operator {op} is not allowed")
    return handler(target, value)


_EXTRA_BUILTINS = {
    "dict": dict,
    "set": set,
    "frozenset": frozenset,
    "sum": sum,
    "min": min,
    "max": max,
    "any": any,
    "all": all,
    "enumerate": enumerate,
    "map": map,
    "filter": filter,
    "reversed": reversed,
    "sorted": sorted,
}


def _build_globals(names: Dict[str, Any]) -> Dict[str, Any]:
    builtins = dict(safe_builtins)
    builtins.update(limited_builtins)
    builtins.update(_EXTRA_BUILTINS)
    env = {
        "__builtins__": builtins,
        "__name__": "mission_sandbox",
        "__metaclass__": type,
        "_getattr_": safer_getattr,
        "_getitem_": default_guarded_getitem,
        "_getiter_": default_guarded_getiter,
        "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
        "_unpack_sequence_": guarded_unpack_sequence,
        "_write_": full_write_guard,
        "_inplacevar_": _inplacevar,
        "_print_": PrintCollector,
        "json": _SafeJson,
    }
    env.update(names)
    return env


def rewrite_tokens(source: str) -> str:
    return TOKEN_PATTERN.sub(r"\1", source or "")


def wrap_code(source: str) -> str:
    """Wrap a script body in a function so bare ``return`` works."""
    body = rewrite_tokens(source)
    indented = textwrap.indent(body, "    ") if body.strip() else "    pass"
    return (
        "def mission_code(input, vars, nodes):\n"
        f"{indented}\n"
        "\n"
        "result = mission_code(input, vars, nodes)\n"
    )


def json_safe(value: Any) -> Any:
    """Round-trip through JSON so only plain data crosses the process boundary."""
    return json.loads(json.dumps(value, default=str))


# =============================================================================
# CHILD PROCESS
# =============================================================================

def _on_alarm(signum, frame):
    raise SandboxTimeout("script exceeded its time budget")


def _arm_timer(seconds: float) -> None:
    if hasattr(signal, "setitimer"):
        signal.signal(signal.SIGALRM, _on_alarm)
        signal.setitimer(signal.ITIMER_REAL, seconds)


def _disarm_timer() -> None:
    if hasattr(signal, "setitimer"):
        signal.setitimer(signal.ITIMER_REAL, 0)


def _address_space_in_use() -> int:
    """Virtual size of this process in bytes, or 0 where /proc is unavailable."""
    try:
        with open("/proc/self/statm") as statm:
            pages = int(statm.read().split()[0])
    except (OSError, ValueError, IndexError):
        return 0
    return pages * os.sysconf("SC_PAGE_SIZE")


def _apply_memory_limit(limit_mb: Optional[int]) -> None:
    """Cap address-space growth at ``limit_mb`` on top of the forked footprint."""
    if not limit_mb or not sys.platform.startswith("linux"):
        return
    import resource
    _, hard = resource.getrlimit(resource.RLIMIT_AS)
    limit = _address_space_in_use() + int(limit_mb) * 1024 * 1024
    if hard != resource.RLIM_INFINITY:
        limit = min(limit, hard)
    resource.setrlimit(resource.RLIMIT_AS, (limit, hard))


def _describe(exc: BaseException) -> str:
    if isinstance(exc, SandboxTimeout):
        return f"TimeoutError: {exc}"
    return f"{type(exc).__name__}: {exc}"


def _run_code_job(job: Dict[str, Any]) -> Dict[str, Any]:
    byte_code = compile_restricted(wrap_code(job["source"]), filename="<mission-code>", mode="exec")
    nodes = MappingProxyType({
        node_id: MappingProxyType({"output": output})
        for node_id, output in job["nodes"].items()
    })
    env = _build_globals({"input": job["input"], "vars": dict(job["vars"]), "nodes": nodes})
    _arm_timer(job["timeout"])
    try:
        exec(byte_code, env)
    finally:
        _disarm_timer()
    return {"ok": True, "value": json_safe(env.get("result"))}


def _run_filter_job(job: Dict[str, Any]) -> Dict[str, Any]:
    expression = rewrite_tokens(job["source"]).strip() or "False"
    byte_code = compile_restricted(expression, filename="<mission-filter>", mode="eval")
    verdicts: List[Optional[bool]] = []
    for item in job["items"]:
        env = _build_globals({"item": item, "vars": dict(job["vars"])})
        _arm_timer(job["timeout"])
        try:
            verdicts.append(bool(eval(byte_code, env)))
        except Exception:
            verdicts.append(None)
        finally:
            _disarm_timer()
    return {"ok": True, "verdicts": verdicts}


def _child_main(conn, job: Dict[str, Any]) -> None:
    """Entry point of the sandbox process. Always answers exactly once."""
    try:
        _apply_memory_limit(job.get("memory_limit_mb"))
        if job["kind"] == "code":
            payload = _run_code_job(job)
        else:
            payload = _run_filter_job(job)
    except Exception as exc:
        payload = {"ok": False, "error": _describe(exc)}
    try:
        conn.send(payload)
    finally:
        conn.close()


# =============================================================================
# HOST SIDE
# =============================================================================

def _select_context():
    methods = multiprocessing.get_all_start_methods()
    return multiprocessing.get_context("fork" if "fork" in methods else "spawn")


async def _wait_readable(conn, timeout: float) -> bool:
    """Wait for the child's answer without blocking the event loop."""
    loop = asyncio.get_running_loop()
    ready = loop.create_future()

    def _mark_ready():
        if not ready.done():
            ready.set_result(True)

    try:
        loop.add_reader(conn.fileno(), _mark_ready)
    except NotImplementedError:
        return await asyncio.to_thread(conn.poll, timeout)
    try:
        await asyncio.wait_for(ready, timeout)
        return True
    except asyncio.TimeoutError:
        return False
    finally:
        loop.remove_reader(conn.fileno())


class SandboxRunner:
    """Runs sandbox jobs in short-lived child processes."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.code_timeout = settings.code_timeout_ms / 1000
        self.filter_timeout = settings.filter_timeout_ms / 1000
        self.memory_limit_mb = settings.sandbox_memory_limit_mb
        self._context = _select_context()

    async def run_code(
        self,
        source: str,
        input_text: str,
        variables: Dict[str, str],
        node_outputs: Dict[str, Dict[str, Any]],
    ) -> SandboxResult:
        """Execute a script body; its ``return`` value becomes the result."""
        job = {
            "kind": "code",
            "source": source,
            "input": input_text,
            "vars": dict(variables),
            "nodes": json_safe(node_outputs),
            "timeout": self.code_timeout,
            "memory_limit_mb": self.memory_limit_mb,
        }
        answer = await self._spawn(job, self.code_timeout)
        if answer is None:
            budget_ms = int(self.code_timeout * 1000)
            return SandboxResult(ok=False, timed_out=True,
                                 error=f"TimeoutError: script execution timed out after {budget_ms}ms")
        if not answer.get("ok"):
            return SandboxResult(ok=False, error=answer.get("error"),
                                 timed_out=str(answer.get("error", "")).startswith("TimeoutError"))
        return SandboxResult(ok=True, value=answer.get("value"))

    async def run_filter(
        self,
        expression: str,
        items: List[Any],
        variables: Dict[str, str],
    ) -> FilterVerdicts:
        """Evaluate ``expression`` once per item, each under the filter budget."""
        if not items:
            return FilterVerdicts()
        job = {
            "kind": "filter",
            "source": expression,
            "items": json_safe(items),
            "vars": dict(variables),
            "timeout": self.filter_timeout,
            "memory_limit_mb": self.memory_limit_mb,
        }
        answer = await self._spawn(job, self.filter_timeout * len(items))
        if answer is None:
            return FilterVerdicts(verdicts=[None] * len(items), timed_out=True,
                                  error="filter evaluation timed out")
        if not answer.get("ok"):
            return FilterVerdicts(verdicts=[None] * len(items), error=answer.get("error"))
        verdicts = list(answer.get("verdicts") or [])
        verdicts.extend([None] * (len(items) - len(verdicts)))
        return FilterVerdicts(verdicts=verdicts)

    async def _spawn(self, job: Dict[str, Any], budget_seconds: float) -> Optional[Dict[str, Any]]:
        """Run ``job`` in a child process. Returns None if it never answered."""
        reader, writer = self._context.Pipe(duplex=False)
        process = self._context.Process(target=_child_main, args=(writer, job), daemon=True)
        process.start()
        writer.close()
        try:
            if not await _wait_readable(reader, budget_seconds + START_GRACE_SECONDS):
                logger.warning("Sandbox process terminated",
                               kind=job["kind"], budget_ms=int(budget_seconds * 1000))
                return None
            try:
                return reader.recv()
            except EOFError:
                logger.warning("Sandbox process exited without a result",
                               kind=job["kind"], exitcode=process.exitcode)
                return None
        finally:
            reader.close()
            if process.is_alive():
                process.kill()
            process.join(timeout=1)
