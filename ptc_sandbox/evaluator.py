"""
Sandbox Evaluator - runs one orchestration script against the capability registry

The script is the body of an async function: it may ``await`` capabilities
at top level and ``return`` its final value. It runs in its own namespace
that exposes exactly:

- every registry capability, as an async callable taking one argument
  object (``await get_user({"id": 1})``) or keywords (``await get_user(id=1)``)
- the defensive helpers from ``helpers.py``
- a restricted ``asyncio`` (gather, sleep, wait_for, wait, as_completed,
  create_task) and ``json`` (dumps, loads)
- a curated builtins table; ``print`` is captured

Every capability is wrapped per run so each call is recorded in the run's
``CallTracer``. The wrapper only observes: the script sees the real result
or the real exception.

Limitations:
- Isolation is namespace-level inside this process. Imports, dunder names,
  private and frame-introspection attributes and bare ``except:`` are
  rejected up front, which keeps honest scripts on the capability surface,
  but this is not a security boundary.
"""

import ast
import asyncio
import builtins
import json
import logging
import time as time_module
import traceback
import uuid
from dataclasses import dataclass, field
from enum import Enum
from types import SimpleNamespace
from typing import Any, Callable, Mapping

from .bridge import Failure, normalize_result
from .capabilities import Capability, CapabilityRegistry
from .config import SandboxConfig
from .exceptions import SandboxBusyError, ScriptError
from .helpers import SCRIPT_HELPERS
from .serialization import to_serializable
from .tracer import CallTracer, CapabilityCallRecord

logger = logging.getLogger(__name__)

SCRIPT_FILENAME = "<orchestration_script>"
_ENTRYPOINT = "__orchestration_main__"

# Time granted to tasks spawned by a script to finish cancelling
SPAWNED_TASK_GRACE_SECONDS = 0.5

# Introspection attributes that lead from script objects back to host frames
BLOCKED_ATTRIBUTES = frozenset({
    "cr_frame", "cr_code", "cr_await", "gi_frame", "gi_code", "gi_yieldfrom",
    "ag_frame", "ag_code", "ag_await", "f_globals", "f_locals", "f_back",
    "f_builtins", "f_code", "tb_frame", "tb_next",
})

SAFE_BUILTIN_NAMES = (
    "abs", "all", "any", "ascii", "bin", "bool", "bytearray", "bytes",
    "callable", "chr", "complex", "dict", "divmod", "enumerate", "filter",
    "float", "format", "frozenset", "hash", "hex", "int", "isinstance",
    "issubclass", "iter", "len", "list", "map", "max", "min", "next",
    "object", "oct", "ord", "pow", "range", "repr", "reversed", "round",
    "set", "slice", "sorted", "str", "sum", "tuple", "zip", "aiter", "anext",
    "staticmethod", "classmethod", "property", "super", "__build_class__",
    "ArithmeticError", "AssertionError", "AttributeError", "Exception",
    "IndexError", "KeyError", "LookupError", "NotImplementedError",
    "RuntimeError", "StopAsyncIteration", "StopIteration", "TimeoutError",
    "TypeError", "ValueError", "ZeroDivisionError",
)


def _safe_builtins() -> dict:
    return {name: getattr(builtins, name) for name in SAFE_BUILTIN_NAMES if hasattr(builtins, name)}


class RunStatus(Enum):
    """SandboxRun lifecycle states"""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class SandboxRun:
    """One execution of one orchestration script"""
    script: str
    id: str = field(default_factory=lambda: f"run_{uuid.uuid4().hex[:12]}")
    status: RunStatus = RunStatus.RUNNING
    trace: list[CapabilityCallRecord] = field(default_factory=list)
    output: Any = None
    error: BaseException | None = None
    stdout: str = ""
    started_at: float = field(default_factory=time_module.time)
    ended_at: float | None = None

    @property
    def execution_time_ms(self) -> float:
        end = self.ended_at if self.ended_at is not None else time_module.time()
        return round((end - self.started_at) * 1000, 3)

    @property
    def error_text(self) -> str | None:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__


class OutputCapture:
    """Capture print() output"""

    def __init__(self, max_size: int = 100000):
        self.outputs: list[str] = []
        self.max_size = max_size
        self._current_size = 0

    def write(self, text: str) -> None:
        if self._current_size < self.max_size:
            self.outputs.append(text)
            self._current_size += len(text)

    def print(self, *args, **kwargs) -> None:
        sep = kwargs.get("sep", " ")
        self.write(sep.join(str(a) for a in args) + kwargs.get("end", "\n"))

    def get_output(self) -> str:
        return "".join(self.outputs)


# ==================== Script compilation ====================

class ScriptValidator(ast.NodeVisitor):
    """Rejects constructs that reach outside the capability surface"""

    def __init__(self):
        self._function_depth = 0

    def visit_Import(self, node: ast.Import):
        raise ScriptError(f"Imports are not allowed (line {node.lineno})")

    def visit_ImportFrom(self, node: ast.ImportFrom):
        raise ScriptError(f"Imports are not allowed (line {node.lineno})")

    def visit_Attribute(self, node: ast.Attribute):
        if node.attr.startswith("_") or node.attr in BLOCKED_ATTRIBUTES:
            raise ScriptError(f"Access to '{node.attr}' is not allowed (line {node.lineno})")
        self.generic_visit(node)

    def visit_ExceptHandler(self, node: ast.ExceptHandler):
        # A bare except would also catch the cancellation that ends a run
        if node.type is None:
            raise ScriptError(
                f"Bare 'except:' is not allowed, catch Exception instead (line {node.lineno})"
            )
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name):
        if node.id.startswith("__"):
            raise ScriptError(f"Name '{node.id}' is not allowed (line {node.lineno})")

    def _visit_function(self, node):
        self._function_depth += 1
        self.generic_visit(node)
        self._function_depth -= 1

    visit_FunctionDef = _visit_function
    visit_AsyncFunctionDef = _visit_function
    visit_Lambda = _visit_function

    def _visit_yield(self, node):
        if self._function_depth == 0:
            raise ScriptError(f"'yield' outside a function is not allowed (line {node.lineno})")
        self.generic_visit(node)

    visit_Yield = _visit_yield
    visit_YieldFrom = _visit_yield


def compile_script(script: str):
    """
    Compile a script into a module defining the async entrypoint.

    The script's statements become the body of ``async def``, so top-level
    ``await`` and ``return`` work and line numbers match the script text.
    """
    try:
        module = ast.parse(script, filename=SCRIPT_FILENAME, mode="exec")
    except SyntaxError as e:
        raise ScriptError(f"SyntaxError: {e.msg} (line {e.lineno})", original_error=e)

    ScriptValidator().visit(module)

    wrapper = ast.parse(f"async def {_ENTRYPOINT}():\n    pass\n")
    wrapper.body[0].body = module.body or [ast.Pass()]
    ast.fix_missing_locations(wrapper)

    try:
        return compile(wrapper, SCRIPT_FILENAME, "exec")
    except SyntaxError as e:
        raise ScriptError(f"SyntaxError: {e.msg} (line {e.lineno})", original_error=e)


def _script_line(error: BaseException) -> int | None:
    """Line of the script where ``error`` was raised, if it came from the script"""
    line = None
    for frame in traceback.extract_tb(error.__traceback__):
        if frame.filename == SCRIPT_FILENAME:
            line = frame.lineno
    return line


def _coerce_arguments(name: str, args: tuple, kwargs: dict) -> dict:
    if not args:
        return dict(kwargs)
    if len(args) == 1 and isinstance(args[0], Mapping):
        return {**args[0], **kwargs}
    raise TypeError(
        f"{name}() takes a single argument object or keyword arguments"
    )


# ==================== Output fallback ====================

def derive_output(output: Any, trace: list[CapabilityCallRecord]) -> Any:
    """
    Best-effort output for scripts that returned nothing.

    - one call: that call's result
    - several calls: a summary of every call plus the last completed result
    - no calls: a short notice
    """
    if output is not None:
        return output

    if not trace:
        return {"message": "Code executed but returned no result", "success": True}

    last_call = trace[-1]
    if len(trace) == 1:
        if last_call.success and last_call.result is not None:
            return last_call.result
        return {
            "success": last_call.success,
            "message": "Tool executed" if last_call.success else last_call.error,
        }

    results = []
    for record in trace:
        entry = {"tool": record.capability, "success": record.success, "result": record.result}
        if not record.success:
            entry["error"] = record.error
        results.append(entry)

    return {
        "message": f"Executed {len(trace)} tool calls",
        "results": results,
        "lastResult": last_call.result,
    }


def _mark_failed(run: SandboxRun, error: BaseException) -> None:
    if run.status is RunStatus.TIMED_OUT:
        return
    run.status = RunStatus.FAILED
    run.error = error


# ==================== Evaluator ====================

class SandboxEvaluator:
    """
    Sandbox Evaluator

    Runs one script at a time against a shared, read-only registry. The
    evaluator is reused across runs; everything that belongs to a run (its
    tracer, captured output, spawned tasks, call counter) is created when
    the run starts and dropped by ``reset()`` when it ends.

    Usage:
        evaluator = SandboxEvaluator(registry)
        run = await evaluator.execute("return await double(x=4)")
        run.output  # 8
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        config: SandboxConfig | None = None
    ):
        self.registry = registry
        self.config = config or SandboxConfig()

        # Per-run state
        self._active_run: SandboxRun | None = None
        self._tracer: CallTracer | None = None
        self._spawned: set[asyncio.Future] = set()
        self._call_count = 0

    @property
    def is_running(self) -> bool:
        return self._active_run is not None

    @property
    def active_run(self) -> SandboxRun | None:
        return self._active_run

    @property
    def call_count(self) -> int:
        """Calls issued by the active run"""
        return self._call_count

    @property
    def trace(self) -> list[CapabilityCallRecord]:
        """Records of the active run so far"""
        return self._tracer.records if self._tracer is not None else []

    def reset(self) -> None:
        """Drop every piece of per-run state"""
        if self._tracer is not None:
            self._tracer.close()
        self._active_run = None
        self._tracer = None
        self._spawned = set()
        self._call_count = 0

    async def execute(self, script: str, run: SandboxRun | None = None) -> SandboxRun:
        """
        Execute a script.

        Returns the completed run. Raises ``ScriptError`` when the script
        cannot be compiled or raises; the partially filled run is attached
        to the error. Cancellation propagates to the caller.
        """
        if self._active_run is not None:
            raise SandboxBusyError(
                f"Evaluator is already running {self._active_run.id}"
            )

        run = run or SandboxRun(script=script)
        tracer = CallTracer(run.id)
        capture = OutputCapture(self.config.max_output_size)
        spawned: set[asyncio.Future] = set()
        self._active_run = run
        self._tracer = tracer
        self._spawned = spawned
        self._call_count = 0

        logger.info(f"Run {run.id}: starting script ({len(script)} chars)")

        try:
            try:
                code = compile_script(script)
            except ScriptError as e:
                e.run = run
                raise

            namespace = self._prepare_namespace(run, tracer, capture)
            exec(code, namespace)
            output = await namespace[_ENTRYPOINT]()

        except ScriptError as e:
            _mark_failed(run, e)
            logger.info(f"Run {run.id}: rejected: {e}")
            raise

        except asyncio.CancelledError as e:
            _mark_failed(run, e)
            logger.info(f"Run {run.id}: cancelled")
            raise

        except Exception as e:
            line = _script_line(e)
            location = f" (line {line})" if line is not None else ""
            error = ScriptError(
                f"{type(e).__name__}: {e}{location}", run=run, original_error=e
            )
            _mark_failed(run, error)
            logger.info(f"Run {run.id}: script raised {type(e).__name__}: {e}")
            logger.debug(traceback.format_exc())
            raise error from e

        else:
            # A run the governor already timed out keeps that outcome
            if run.status is not RunStatus.TIMED_OUT:
                run.output = to_serializable(derive_output(output, tracer.records))
                run.status = RunStatus.COMPLETED
            return run

        finally:
            await self._cancel_spawned(spawned)
            run.trace = tracer.close()
            run.stdout = capture.get_output()
            if run.ended_at is None:
                run.ended_at = time_module.time()
            logger.info(
                f"Run {run.id}: {run.status.value} with {len(run.trace)} calls "
                f"in {run.execution_time_ms:.0f}ms"
            )
            # An abandoned run must not clear the state of a later one
            if self._active_run is run:
                self.reset()

    def _prepare_namespace(
        self,
        run: SandboxRun,
        tracer: CallTracer,
        capture: OutputCapture
    ) -> dict:
        spawned = self._spawned

        def create_task(coro) -> asyncio.Future:
            task = asyncio.ensure_future(coro)
            spawned.add(task)
            task.add_done_callback(spawned.discard)
            return task

        namespace = {
            "__builtins__": _safe_builtins(),
            "__name__": "orchestration_script",
            "asyncio": SimpleNamespace(
                gather=asyncio.gather,
                sleep=asyncio.sleep,
                wait_for=asyncio.wait_for,
                wait=asyncio.wait,
                as_completed=asyncio.as_completed,
                FIRST_COMPLETED=asyncio.FIRST_COMPLETED,
                FIRST_EXCEPTION=asyncio.FIRST_EXCEPTION,
                ALL_COMPLETED=asyncio.ALL_COMPLETED,
                create_task=create_task,
                TimeoutError=asyncio.TimeoutError,
            ),
            "json": SimpleNamespace(
                dumps=json.dumps,
                loads=json.loads,
                JSONDecodeError=json.JSONDecodeError,
            ),
            "print": capture.print,
        }
        namespace.update(SCRIPT_HELPERS)

        for capability in self.registry:
            namespace[capability.name] = self._create_capability_function(
                capability, run, tracer
            )

        return namespace

    def _create_capability_function(
        self,
        capability: Capability,
        run: SandboxRun,
        tracer: CallTracer
    ) -> Callable:
        """Wrap a capability so every call lands in the run's tracer"""
        name = capability.name

        def record(arguments: Any, started_at: float, result: Any = None, error: str | None = None):
            tracer.append(CapabilityCallRecord(
                capability=name,
                args=arguments,
                origin=capability.origin,
                source=capability.source,
                run_id=run.id,
                started_at=started_at,
                ended_at=time_module.time(),
                result=result,
                error=error,
            ))

        async def capability_func(*args, **kwargs) -> Any:
            started_at = time_module.time()
            arguments: Any = {"args": list(args), **kwargs}
            if tracer is self._tracer:
                self._call_count += 1
            try:
                arguments = _coerce_arguments(name, args, kwargs)
                logger.debug(f"Run {run.id}: call {name}({arguments})")
                result = await capability.execute(dict(arguments))
            except asyncio.CancelledError:
                record(arguments, started_at, error="cancelled")
                raise
            except Exception as e:
                record(arguments, started_at, error=f"{type(e).__name__}: {e}")
                logger.debug(f"Run {run.id}: {name} raised {type(e).__name__}: {e}")
                raise

            if not capability.is_bridged:
                record(arguments, started_at, result=result)
                return result

            normalized = normalize_result(result)
            if isinstance(normalized, Failure):
                record(arguments, started_at, error=normalized.error_text)
            else:
                record(arguments, started_at, result=normalized.data)
            return normalized.to_payload()

        capability_func.__name__ = name
        capability_func.__doc__ = capability.description
        return capability_func

    async def _cancel_spawned(self, spawned: set[asyncio.Future]) -> None:
        pending = [task for task in spawned if not task.done()]
        if not pending:
            return
        for task in pending:
            task.cancel()
        done, still_pending = await asyncio.wait(pending, timeout=SPAWNED_TASK_GRACE_SECONDS)
        if still_pending:
            logger.warning(f"{len(still_pending)} script tasks did not stop after cancellation, abandoned")
