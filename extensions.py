from __future__ import annotations

import hashlib
import importlib.util
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple


EXTENSION_API_VERSION = 1

EXT_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "ext")

# Standard library modules loaded by build_default_services(), in order.
DEFAULT_EXTENSIONS = ("core", "arrays", "tables", "strings", "maths", "files", "web")

HOOK_EVENTS = frozenset(
    {
        "program_start",
        "program_end",
        "before_statement",
        "after_statement",
        "before_call",
        "after_call",
        "on_error",
    }
)


class RSLExtensionError(Exception):
    pass


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"
    requires_api: int = EXTENSION_API_VERSION


@dataclass
class HookRegistry:
    # event -> list[(priority, handler, ext_name)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int, ext_name: str) -> None:
        if event not in HOOK_EVENTS:
            raise RSLExtensionError(f"Unknown hook event '{event}'")
        self._events.setdefault(event, []).append((priority, handler, ext_name))
        self._events[event].sort(key=lambda t: t[0], reverse=True)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _ext in self._events.get(event, []):
            handler(*args, **kwargs)


@dataclass
class RuntimeServices:
    metadata: List[ExtensionMetadata] = field(default_factory=list)
    hook_registry: HookRegistry = field(default_factory=HookRegistry)
    # natives are bound into the interpreter's root environment at construction
    natives: List[Tuple[str, int, Optional[int], Callable[..., Any], str]] = field(default_factory=list)
    # host settings read by natives (e.g. "http_timeout", "http_transport")
    config: Dict[str, Any] = field(default_factory=dict)

    def native_names(self) -> List[str]:
        return [entry[0] for entry in self.natives]


class ExtensionAPI:
    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self._services = services
        self._ext_name = ext_name

    # ---- metadata ----
    def metadata(self, *, name: str, version: str = "0.0.0", requires_api: int = EXTENSION_API_VERSION) -> None:
        self._services.metadata.append(ExtensionMetadata(name=name, version=version, requires_api=requires_api))

    # ---- natives ----
    def register_native(
        self,
        name: str,
        min_args: int,
        max_args: Optional[int],
        impl: Callable[..., Any],
        *,
        doc: str = "",
    ) -> None:
        if not name:
            raise RSLExtensionError("Native name must be non-empty")
        if name in self._services.native_names():
            raise RSLExtensionError(f"Native '{name}' is already registered")
        self._services.natives.append((name, int(min_args), None if max_args is None else int(max_args), impl, doc))

    def native(self, name: Optional[str] = None, min_args: int = 0, max_args: Optional[int] = None, *, doc: str = ""):
        """Decorator form; without a name the function's snake_case name is camel-cased."""

        def deco(fn: Callable[..., Any]) -> Callable[..., Any]:
            from interpreter import native_name

            self.register_native(name or native_name(fn.__name__), min_args, max_args, fn, doc=doc or (fn.__doc__ or ""))
            return fn

        return deco

    # ---- hooks ----
    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0):
        if handler is None:
            def deco(fn: Callable[..., None]) -> Callable[..., None]:
                self._services.hook_registry.on_event(event, fn, priority=priority, ext_name=self._ext_name)
                return fn
            return deco
        self._services.hook_registry.on_event(event, handler, priority=priority, ext_name=self._ext_name)
        return handler


def _unique_module_name(path: str) -> str:
    base = os.path.basename(path)
    digest = hashlib.sha256(os.path.abspath(path).encode("utf-8")).hexdigest()[:12]
    safe = "".join(ch if ch.isalnum() else "_" for ch in base)
    return f"rsl_ext_{safe}_{digest}"


def load_extension_module(path: str) -> Any:
    if not os.path.exists(path):
        raise RSLExtensionError(f"Extension not found: {path}")
    mod_name = _unique_module_name(path)
    spec = importlib.util.spec_from_file_location(mod_name, path)
    if spec is None or spec.loader is None:
        raise RSLExtensionError(f"Failed to load extension module: {path}")
    module = importlib.util.module_from_spec(spec)

    # Let extensions import siblings by temporarily prepending their directory.
    ext_dir = os.path.dirname(os.path.abspath(path))
    sys.path.insert(0, ext_dir)
    try:
        spec.loader.exec_module(module)  # type: ignore[union-attr]
    finally:
        if sys.path and sys.path[0] == ext_dir:
            sys.path.pop(0)
    return module


def _resolve_in_builtin_ext(name: str) -> str:
    """Map a bare extension name (``"web"``) to its file under ext/."""
    if os.path.isfile(name):
        return os.path.abspath(name)
    candidate = os.path.join(EXT_DIR, name if name.endswith(".py") else f"{name}.py")
    if os.path.exists(candidate):
        return candidate
    raise RSLExtensionError(f"Extension not found: {name}")


def register_extension(services: RuntimeServices, path: str) -> None:
    module = load_extension_module(path)
    api_version = getattr(module, "RSL_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
    if api_version != EXTENSION_API_VERSION:
        raise RSLExtensionError(
            f"Extension {path} requires API {api_version}, host supports {EXTENSION_API_VERSION}"
        )
    register = getattr(module, "rsl_register", None)
    if register is None or not callable(register):
        raise RSLExtensionError(f"Extension {path} must define callable rsl_register(ext)")
    ext_name = getattr(module, "RSL_EXTENSION_NAME", os.path.splitext(os.path.basename(path))[0])
    ext = ExtensionAPI(services=services, ext_name=str(ext_name))
    register(ext)


def build_default_services(*, include_stdlib: bool = True) -> RuntimeServices:
    services = RuntimeServices()
    if include_stdlib:
        for name in DEFAULT_EXTENSIONS:
            register_extension(services, _resolve_in_builtin_ext(name))
    return services


def load_runtime_services(paths: Sequence[str], *, include_stdlib: bool = True) -> RuntimeServices:
    services = build_default_services(include_stdlib=include_stdlib)
    for path in paths:
        register_extension(services, _resolve_in_builtin_ext(path))
    return services
