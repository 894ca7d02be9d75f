"""
Derive packaging units (functions and layers) from the service configuration
and decide how each one is packaged.

Mode precedence for a function, highest first:
  1. its own `package.artifact`          -> PreBuilt(artifact)
  2. its own `package.individually`      -> Individual / Shared
  3. service `package.individually`      -> Individual
  4. otherwise                           -> Shared
A shared function is covered by the service `package.artifact` when one is
declared. Individual functions never reuse the service artifact. Layers are
always Individual unless they declare their own artifact.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Any, Dict, List, Optional, Tuple, Union

from package_config import get_service_name
from package_errors import ConfigurationError
from package_patterns import merge_patterns

logger = logging.getLogger(__name__)

FUNCTION = 'function'
LAYER = 'layer'


@dataclass(frozen=True)
class Shared:
    pass


@dataclass(frozen=True)
class Individual:
    pass


@dataclass(frozen=True)
class PreBuilt:
    path: str


PackagingMode = Union[Shared, Individual, PreBuilt]


@dataclass(frozen=True)
class ScopeOverride:
    """Patterns contributed by a single configuration scope."""
    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()

    @classmethod
    def from_config(cls, *blocks: Optional[Dict[str, Any]]) -> 'ScopeOverride':
        blocks = [b or {} for b in blocks]
        return cls(
            include=tuple(merge_patterns(*(b.get('include') for b in blocks))),
            exclude=tuple(merge_patterns(*(b.get('exclude') for b in blocks))),
        )


@dataclass(frozen=True)
class PackagingUnit:
    name: str
    kind: str
    root_directory: Path
    mode: PackagingMode
    pattern_override: ScopeOverride = field(default_factory=ScopeOverride)
    executables: Tuple[str, ...] = ()

    @property
    def archive_name(self) -> str:
        return f"{self.name}.zip"


def _package_block(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return (config or {}).get('package') or {}


def _normalize_relative(path: str) -> str:
    posix = PurePath(path).as_posix()
    while posix.startswith('./'):
        posix = posix[2:]
    return posix


def check_artifact(artifact: str, service_path: Path, unit: str) -> PreBuilt:
    """Verify a pre-built artifact exists; the configured path is kept verbatim."""
    location = Path(artifact)
    if not location.is_absolute():
        location = service_path / location
    if not location.is_file():
        raise ConfigurationError(f"Pre-built artifact not found: {artifact}",
                                 unit=unit, root=str(service_path))
    return PreBuilt(artifact)


def resolve_function_mode(service_package: Dict[str, Any],
                          function_package: Dict[str, Any]) -> PackagingMode:
    """Apply the function mode precedence without touching the filesystem."""
    if function_package.get('artifact'):
        return PreBuilt(function_package['artifact'])

    individually = function_package.get('individually')
    if individually is None:
        individually = bool(service_package.get('individually'))
    if individually:
        return Individual()

    if service_package.get('artifact'):
        return PreBuilt(service_package['artifact'])
    return Shared()


def resolve_layer_mode(name: str, layer: Dict[str, Any]) -> PackagingMode:
    package = _package_block(layer)
    artifact = package.get('artifact') or layer.get('artifact')
    if artifact:
        return PreBuilt(artifact)
    if package.get('individually') is False or layer.get('individually') is False:
        raise ConfigurationError("Layers are always packaged individually", unit=name)
    return Individual()


def get_executables(function_config: Dict[str, Any], provider_runtime: Optional[str]) -> Tuple[str, ...]:
    """Files that must be stored executable for the function's runtime."""
    runtime = function_config.get('runtime') or provider_runtime or ''
    if runtime.startswith('go'):
        handler = function_config.get('handler')
        return (_normalize_relative(handler),) if handler else ()
    if runtime.startswith('provided'):
        return ('bootstrap',)
    return ()


def build_function_units(config: Dict[str, Any], service_path: Path) -> List[PackagingUnit]:
    """One unit per configured function, with its mode decided."""
    service_path = Path(service_path)
    service_package = config.get('package') or {}
    provider_runtime = (config.get('provider') or {}).get('runtime')

    units = []
    for name, func in (config.get('functions') or {}).items():
        func = func or {}
        function_package = _package_block(func)
        mode = resolve_function_mode(service_package, function_package)

        if isinstance(mode, PreBuilt):
            mode = check_artifact(mode.path, service_path, name)
        if service_package.get('artifact') and isinstance(mode, Individual):
            logger.warning(f"Ignoring service artifact for individually packaged function {name}")
        if function_package.get('artifact') and function_package.get('individually'):
            logger.warning(f"Function {name} declares an artifact; 'individually' has no effect")

        units.append(PackagingUnit(
            name=name,
            kind=FUNCTION,
            root_directory=service_path,
            mode=mode,
            pattern_override=ScopeOverride.from_config(function_package),
            executables=get_executables(func, provider_runtime),
        ))
        logger.debug(f"Function {name} resolved to {type(mode).__name__}")
    return units


def _layer_runtime(layer: Dict[str, Any]) -> Optional[str]:
    runtimes = layer.get('compatibleRuntimes') or []
    if isinstance(runtimes, str):
        return runtimes
    return runtimes[0] if runtimes else None


def build_layer_units(config: Dict[str, Any], service_path: Path) -> List[PackagingUnit]:
    """One unit per configured layer, rooted at the layer's own path."""
    service_path = Path(service_path)
    provider_runtime = (config.get('provider') or {}).get('runtime')
    units = []
    for name, layer in (config.get('layers') or {}).items():
        mode = resolve_layer_mode(name, layer)
        if isinstance(mode, PreBuilt):
            mode = check_artifact(mode.path, service_path, name)
        units.append(PackagingUnit(
            name=name,
            kind=LAYER,
            root_directory=(service_path / layer['path']).resolve(),
            mode=mode,
            pattern_override=ScopeOverride.from_config(layer, _package_block(layer)),
            executables=get_executables({'runtime': _layer_runtime(layer)}, provider_runtime),
        ))
    return units


def get_layer_paths(config: Dict[str, Any], service_path: Path) -> List[str]:
    """Layer directories that sit inside the service tree, relative to it."""
    service_root = Path(service_path).resolve()
    paths = []
    for layer in (config.get('layers') or {}).values():
        layer_root = (service_root / layer['path']).resolve()
        if layer_root != service_root and layer_root.is_relative_to(service_root):
            paths.append(layer_root.relative_to(service_root).as_posix())
    return paths


def shared_archive_name(config: Dict[str, Any]) -> str:
    return f"{get_service_name(config)}.zip"


def describe_mode(mode: PackagingMode) -> str:
    if isinstance(mode, PreBuilt):
        return f"pre-built ({mode.path})"
    if isinstance(mode, Individual):
        return "individual"
    return "shared"
