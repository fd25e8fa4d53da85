"""Compile scrippet source into an invocable instance.

A scrippet is executed in a fresh namespace that only holds:
- host, app: the host handle and its application object
- Notice: the notification constructor
- module, exports, Scrippet, default_export, invoke: export scaffolding

Builtins that reach outside those bindings (globals, vars, locals, exit,
quit, breakpoint, input, help) are shadowed. This is a hygiene boundary
that keeps scrippets from casually depending on ambient state. It is NOT a
security sandbox: a scrippet can still import anything and has the same
permissions as the process running it.

Supported export shapes, in precedence order:

    module.exports = ...          # MODULE_EXPORTS (or rebinding exports)
    class Scrippet: ...           # NAMED_CLASS
    default_export = ...          # DEFAULT_EXPORT
    def invoke(host): ...         # INVOKE_FUNCTION
    class AnythingWithInvoke: ... # GLOBAL_CLASS (last one defined)

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

import builtins
import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import SimpleNamespace
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class ScrippetLoadError(Exception):
    """Raised when a scrippet cannot be compiled into an invocable."""

    pass


class ExportShape(Enum):
    """Where a scrippet's export was found."""

    MODULE_EXPORTS = "module_exports"
    NAMED_CLASS = "named_class"
    DEFAULT_EXPORT = "default_export"
    INVOKE_FUNCTION = "invoke_function"
    GLOBAL_CLASS = "global_class"


EXPORT_PRECEDENCE: Tuple[ExportShape, ...] = (
    ExportShape.MODULE_EXPORTS,
    ExportShape.NAMED_CLASS,
    ExportShape.DEFAULT_EXPORT,
    ExportShape.INVOKE_FUNCTION,
    ExportShape.GLOBAL_CLASS,
)

SHADOWED_BUILTINS = (
    "globals",
    "vars",
    "locals",
    "exit",
    "quit",
    "breakpoint",
    "input",
    "help",
)


@dataclass(frozen=True)
class ResolvedExport:
    """An export value tagged with the shape it came from."""
    shape: ExportShape
    value: Any


def _sandbox_builtins() -> Dict[str, Any]:
    scoped = dict(vars(builtins))
    for name in SHADOWED_BUILTINS:
        scoped[name] = None
    return scoped


def build_namespace(host: Any, notice: Any, module_name: str) -> Dict[str, Any]:
    """Build the evaluation namespace for one scrippet."""
    module = SimpleNamespace(exports=None)
    return {
        "__name__": module_name,
        "__builtins__": _sandbox_builtins(),
        "host": host,
        "app": getattr(host, "app", None),
        "Notice": notice,
        "module": module,
        "exports": None,
        "Scrippet": None,
        "default_export": None,
        "invoke": None,
    }


def _module_exports(namespace: Dict[str, Any]) -> Any:
    module = namespace.get("module")
    exported = getattr(module, "exports", None)
    if exported is not None:
        return exported
    return namespace.get("exports")


def _global_class(namespace: Dict[str, Any]) -> Any:
    module_name = namespace.get("__name__")
    found = None
    for value in namespace.values():
        if (
            inspect.isclass(value)
            and value.__module__ == module_name
            and callable(getattr(value, "invoke", None))
        ):
            found = value
    return found


def _candidate(shape: ExportShape, namespace: Dict[str, Any]) -> Any:
    if shape is ExportShape.MODULE_EXPORTS:
        return _module_exports(namespace)
    if shape is ExportShape.NAMED_CLASS:
        return namespace.get("Scrippet")
    if shape is ExportShape.DEFAULT_EXPORT:
        return namespace.get("default_export")
    if shape is ExportShape.INVOKE_FUNCTION:
        invoke = namespace.get("invoke")
        return SimpleNamespace(invoke=invoke) if callable(invoke) else None
    if shape is ExportShape.GLOBAL_CLASS:
        return _global_class(namespace)
    raise ValueError(f"Unknown export shape: {shape}")


def resolve_export(namespace: Dict[str, Any]) -> Optional[ResolvedExport]:
    """Pick the export of an executed namespace by EXPORT_PRECEDENCE."""
    for shape in EXPORT_PRECEDENCE:
        value = _candidate(shape, namespace)
        if value is not None:
            return ResolvedExport(shape, value)
    return None


def _call_with_host(factory: Any, host: Any) -> Any:
    """Call a class or factory with the host if it accepts an argument."""
    try:
        signature = inspect.signature(factory)
    except (TypeError, ValueError):
        return factory(host)
    try:
        signature.bind(host)
    except TypeError:
        return factory()
    return factory(host)


def instantiate(resolved: ResolvedExport, host: Any) -> Any:
    """Turn an export value into an instance.

    Classes are instantiated with the host, plain factory functions are
    called with the host, mappings become attribute objects, anything else
    is used as-is.
    """
    value = resolved.value
    if inspect.isclass(value):
        return _call_with_host(value, host)
    if isinstance(value, Mapping):
        return SimpleNamespace(**{str(k): v for k, v in value.items()})
    if (inspect.isfunction(value) or inspect.ismethod(value)) and not hasattr(value, "invoke"):
        produced = _call_with_host(value, host)
        if isinstance(produced, Mapping):
            return SimpleNamespace(**{str(k): v for k, v in produced.items()})
        return produced
    return value


def is_invocable(candidate: Any) -> bool:
    return candidate is not None and callable(getattr(candidate, "invoke", None))


def load_scrippet(host: Any, source: str, path: str = "<scrippet>", notice: Any = None) -> Any:
    """Compile and execute a scrippet, returning its instance.

    Args:
        host: Host handle passed to the scrippet and its constructor.
        source: Scrippet source text.
        path: Storage path, used in tracebacks and the module name.
        notice: Notification constructor exposed as Notice.

    Returns:
        An object with a callable invoke.

    Raises:
        ScrippetLoadError: If the source fails to compile or run, or
            does not expose invoke.
    """
    if notice is None:
        notice = getattr(host, "Notice", None)
    namespace = build_namespace(host, notice, f"scrippet:{path}")

    try:
        code = compile(source, f"<scrippet:{path}>", "exec")
        exec(code, namespace)
    except (Exception, SystemExit) as e:
        raise ScrippetLoadError(f"{type(e).__name__}: {e}") from e

    resolved = resolve_export(namespace)
    if resolved is None:
        raise ScrippetLoadError("Scrippet must expose invoke(host)")

    try:
        instance = instantiate(resolved, host)
    except (Exception, SystemExit) as e:
        raise ScrippetLoadError(f"Failed to construct scrippet: {type(e).__name__}: {e}") from e

    if not is_invocable(instance):
        raise ScrippetLoadError("Scrippet must expose invoke(host)")

    logger.debug(f"Loaded {path} via {resolved.shape.value}")
    return instance


class InstanceCache:
    """Loaded instances keyed by stable ID."""

    def __init__(self):
        self._instances: Dict[str, Any] = {}

    def __contains__(self, scrippet_id: str) -> bool:
        return scrippet_id in self._instances

    def __len__(self) -> int:
        return len(self._instances)

    def get(self, scrippet_id: str) -> Optional[Any]:
        return self._instances.get(scrippet_id)

    def put(self, scrippet_id: str, instance: Any) -> None:
        self._instances[scrippet_id] = instance

    def invalidate(self, scrippet_id: str) -> None:
        self._instances.pop(scrippet_id, None)

    def clear(self) -> None:
        self._instances.clear()
