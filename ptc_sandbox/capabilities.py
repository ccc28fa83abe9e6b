"""
Capability registry - the set of operations an orchestration script may call
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, get_origin, get_type_hints

from .exceptions import CapabilityExecutionError, SandboxError

logger = logging.getLogger(__name__)

CapabilityExecute = Callable[[dict], Awaitable[Any]]

_JSON_TYPE_TO_PY = {
    "string": "str",
    "integer": "int",
    "number": "float",
    "boolean": "bool",
    "array": "list",
    "object": "dict"
}

_PY_TYPE_TO_JSON = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object"
}


class CapabilityOrigin(Enum):
    """Where a capability comes from"""
    LOCAL = "local"
    BRIDGED = "bridged"


@dataclass(frozen=True)
class Capability:
    """
    One invocable operation.

    ``execute`` always takes a single argument object (a dict) and is
    awaited; bridged capabilities resolve to a ``BridgedResult``.
    """
    name: str
    description: str
    execute: CapabilityExecute
    input_schema: dict
    origin: CapabilityOrigin = CapabilityOrigin.LOCAL
    source: str | None = None

    @property
    def is_bridged(self) -> bool:
        return self.origin is CapabilityOrigin.BRIDGED

    def to_claude_tool_schema(self) -> dict:
        """Anthropic tool definition for direct calls"""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema
        }

    def to_stub_signature(self) -> str:
        """Signature shown to the model in the tool documentation"""
        params = []
        props = self.input_schema.get("properties", {})
        required = self.input_schema.get("required", [])

        for param_name, param_info in props.items():
            py_type = _JSON_TYPE_TO_PY.get(param_info.get("type", "any"), "Any")
            if param_name in required:
                params.append(f"{param_name}: {py_type}")
            else:
                params.append(f"{param_name}: {py_type} = None")

        return f"async def {self.name}({', '.join(params)}) -> Any"


def adapt_function(func: Callable) -> CapabilityExecute:
    """
    Adapt a plain function to the one-argument-object convention.

    A function whose only parameter is named ``args`` receives the argument
    dict as-is; anything else is called with the dict unpacked as keywords.
    Synchronous functions run in a worker thread.
    """
    params = list(inspect.signature(func).parameters)
    takes_args_object = params == ["args"]
    is_async = inspect.iscoroutinefunction(func)

    async def execute(args: dict) -> Any:
        if takes_args_object:
            if is_async:
                return await func(args)
            return await asyncio.to_thread(func, args)
        if is_async:
            return await func(**args)
        return await asyncio.to_thread(func, **args)

    return execute


def infer_input_schema(func: Callable) -> dict:
    """Infer a JSON Schema object from a function signature"""
    sig = inspect.signature(func)
    hints = get_type_hints(func) if hasattr(func, '__annotations__') else {}

    properties = {}
    required = []

    for param_name, param in sig.parameters.items():
        if param_name in ('self', 'cls', 'args', 'kwargs'):
            continue

        param_type = hints.get(param_name, str)
        properties[param_name] = {
            "type": _PY_TYPE_TO_JSON.get(get_origin(param_type) or param_type, "string"),
            "description": f"Parameter: {param_name}"
        }

        if param.default == inspect.Parameter.empty:
            required.append(param_name)

    return {
        "type": "object",
        "properties": properties,
        "required": required
    }


class CapabilityRegistry:
    """
    Capability registry

    Maps capability names to async operations. Local capabilities are
    registered directly; bridged ones are added by ``CapabilityBridge``.
    The registry is frozen by the composition root once assembled and is
    read-only from then on.

    Usage:
        registry = CapabilityRegistry()

        @registry.register(description="Double a number")
        async def double(x: int) -> int:
            return 2 * x
    """

    def __init__(self):
        self._capabilities: dict[str, Capability] = {}
        self._frozen = False

    def register(
        self,
        name: str | None = None,
        description: str | None = None,
        input_schema: dict | None = None
    ) -> Callable:
        """Decorator: register a function as a local capability"""
        def decorator(func: Callable) -> Callable:
            cap_name = name or func.__name__
            cap_desc = description or (func.__doc__ or "").strip() or f"Capability: {cap_name}"

            self.register_capability(Capability(
                name=cap_name,
                description=cap_desc,
                execute=adapt_function(func),
                input_schema=input_schema or infer_input_schema(func),
            ))
            return func

        return decorator

    def register_capability(self, capability: Capability) -> Capability | None:
        """
        Register a capability object.

        Returns the capability it replaced, if any.
        """
        if self._frozen:
            raise SandboxError(
                f"Registry is frozen, cannot register '{capability.name}'"
            )
        previous = self._capabilities.get(capability.name)
        self._capabilities[capability.name] = capability
        if previous is not None:
            logger.warning(
                f"Capability '{capability.name}' replaced "
                f"({previous.source or previous.origin.value} -> "
                f"{capability.source or capability.origin.value})"
            )
        return previous

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Capability | None:
        return self._capabilities.get(name)

    def get_all(self) -> list[Capability]:
        return list(self._capabilities.values())

    def names(self) -> list[str]:
        return list(self._capabilities)

    def local_names(self) -> list[str]:
        return [c.name for c in self._capabilities.values() if not c.is_bridged]

    def bridged_names(self) -> list[str]:
        return [c.name for c in self._capabilities.values() if c.is_bridged]

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)

    def __iter__(self) -> Iterator[Capability]:
        return iter(list(self._capabilities.values()))

    async def execute(self, name: str, args: dict | None = None) -> Any:
        """Call a capability outside of any sandbox run"""
        capability = self._capabilities.get(name)
        if capability is None:
            raise CapabilityExecutionError(name, "capability not found")
        return await capability.execute(dict(args or {}))

    def generate_documentation(self) -> str:
        """Capability reference for the system prompt"""
        docs = []
        for capability in self._capabilities.values():
            origin = f"bridged from {capability.source}" if capability.is_bridged else "local"
            docs.append(f"""
### {capability.name} ({origin})
```python
{capability.to_stub_signature()}
```
**Description:** {capability.description}
""")
        return "\n".join(docs)

    def to_claude_tools(self) -> list[dict]:
        return [c.to_claude_tool_schema() for c in self._capabilities.values()]
