#!/usr/bin/env python3
"""
Package a service's functions and layers into deployment ZIP archives.

Reads the service configuration, decides for every function and layer whether
it ships in the shared service archive, in its own archive, or as a pre-built
artifact, resolves the files for each archive and builds them concurrently.
"""

import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from build_packages import build_archive
from default_excludes import DEFAULT_PLUGINS_LOCAL_PATH, get_default_excludes, get_directory_excludes
from file_walker import WalkCache
from package_config import (
    DEFAULT_CONCURRENCY,
    DEFAULT_CONFIG_FILE,
    get_plugins_local_path,
    get_service_name,
    load_config,
    validate_config,
)
from package_errors import ConfigurationError, PackagingError, PackagingTimeoutError
from package_patterns import merge_patterns, resolve_file_paths
from package_units import (
    LAYER,
    PackagingMode,
    PackagingUnit,
    PreBuilt,
    Shared,
    build_function_units,
    build_layer_units,
    describe_mode,
    get_layer_paths,
    shared_archive_name,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR = '.serverless'


@dataclass(frozen=True)
class PackagePlan:
    """Everything needed to produce (or pass through) one artifact."""
    name: str
    mode: PackagingMode
    covers: Tuple[str, ...]
    root: Optional[Path] = None
    files: Tuple[str, ...] = ()
    archive_name: Optional[str] = None
    executables: Tuple[str, ...] = ()


@dataclass
class PackagingReport:
    artifacts: Dict[str, str] = field(default_factory=dict)
    failures: Dict[str, PackagingError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


class PackageService:
    def __init__(self, config: Dict[str, Any], service_path: Union[str, Path],
                 config_file_name: str = DEFAULT_CONFIG_FILE,
                 output_dir: Optional[Union[str, Path]] = None,
                 max_workers: Optional[int] = None):
        """Initialize the packager for one invocation."""
        validate_config(config)
        self.config = config
        self.service_path = Path(service_path).resolve()
        self.service_name = get_service_name(config)
        self.output_dir = Path(output_dir) if output_dir else self.service_path / DEFAULT_OUTPUT_DIR
        if not self.output_dir.is_absolute():
            self.output_dir = self.service_path / self.output_dir
        package = config.get('package') or {}
        if max_workers is None:
            max_workers = package.get('concurrency', DEFAULT_CONCURRENCY)
        self.max_workers = max_workers
        if self.max_workers < 1:
            raise ConfigurationError(f"Concurrency must be positive, got {self.max_workers}",
                                     unit=self.service_name)
        self.walk_cache = WalkCache()
        self.default_excludes = get_default_excludes(
            config_file_name,
            plugins_local_path=get_plugins_local_path(config) or DEFAULT_PLUGINS_LOCAL_PATH,
            use_dotenv=bool(config.get('useDotenv')),
        ) + self._output_dir_excludes()

    @classmethod
    def from_config_file(cls, config_path: Union[str, Path], **kwargs) -> 'PackageService':
        """Load the YAML configuration and package relative to its directory."""
        config_path = Path(config_path).resolve()
        config = load_config(config_path)
        return cls(config, config_path.parent, config_path.name, **kwargs)

    def _output_dir_excludes(self) -> List[str]:
        output_dir = self.output_dir.resolve()
        if output_dir == self.service_path or not output_dir.is_relative_to(self.service_path):
            return []
        return get_directory_excludes([output_dir.relative_to(self.service_path).as_posix()])

    def get_excludes(self, unit_excludes: Iterable[str] = (), exclude_layers: bool = True) -> List[str]:
        """Defaults, then layer directories, then service excludes, then the unit's own."""
        layer_excludes = []
        if exclude_layers:
            layer_excludes = get_directory_excludes(get_layer_paths(self.config, self.service_path))
        service_excludes = (self.config.get('package') or {}).get('exclude')
        return merge_patterns(self.default_excludes, layer_excludes, service_excludes, list(unit_excludes))

    def get_includes(self, unit_includes: Iterable[str] = ()) -> List[str]:
        """Service includes followed by the unit's own."""
        service_includes = (self.config.get('package') or {}).get('include')
        return merge_patterns(service_includes, list(unit_includes))

    def resolve_file_paths(self, root: Path, exclude: List[str], include: List[str],
                           unit: str) -> List[str]:
        candidates = self.walk_cache.get(root)
        return resolve_file_paths(candidates, exclude, include, unit=unit, root=str(root))

    def function_units(self) -> List[PackagingUnit]:
        return build_function_units(self.config, self.service_path)

    def layer_units(self) -> List[PackagingUnit]:
        return build_layer_units(self.config, self.service_path)

    def _plan_shared(self, units: List[PackagingUnit]) -> PackagePlan:
        for unit in units:
            if unit.pattern_override.include or unit.pattern_override.exclude:
                logger.warning(f"Function {unit.name} is not packaged individually; "
                               f"its include/exclude patterns are ignored")
        files = self.resolve_file_paths(self.service_path, self.get_excludes(),
                                        self.get_includes(), self.service_name)
        executables = sorted({path for unit in units for path in unit.executables})
        return PackagePlan(
            name=self.service_name,
            mode=Shared(),
            covers=tuple(unit.name for unit in units),
            root=self.service_path,
            files=tuple(files),
            archive_name=shared_archive_name(self.config),
            executables=tuple(executables),
        )

    def _plan_unit(self, unit: PackagingUnit) -> PackagePlan:
        if isinstance(unit.mode, PreBuilt):
            return PackagePlan(name=unit.name, mode=unit.mode, covers=(unit.name,))

        if unit.kind == LAYER:
            exclude = self.get_excludes(unit.pattern_override.exclude, exclude_layers=False)
        else:
            exclude = self.get_excludes(unit.pattern_override.exclude)
        include = self.get_includes(unit.pattern_override.include)
        files = self.resolve_file_paths(unit.root_directory, exclude, include, unit.name)
        return PackagePlan(
            name=unit.name,
            mode=unit.mode,
            covers=(unit.name,),
            root=unit.root_directory,
            files=tuple(files),
            archive_name=unit.archive_name,
            executables=unit.executables,
        )

    def plan(self) -> List[PackagePlan]:
        """Decide modes and resolve every archive's files before anything is written."""
        functions = self.function_units()
        layers = self.layer_units()

        plans = []
        shared = [unit for unit in functions if isinstance(unit.mode, Shared)]
        if shared:
            plans.append(self._plan_shared(shared))
        for unit in functions + layers:
            if not isinstance(unit.mode, Shared):
                plans.append(self._plan_unit(unit))

        for unit in functions + layers:
            logger.info(f"{unit.kind.capitalize()} {unit.name}: {describe_mode(unit.mode)}")
        return plans

    def _build(self, plan: PackagePlan, cancel_event: threading.Event) -> str:
        destination = self.output_dir / plan.archive_name
        logger.info(f"Packaging {plan.name} ({len(plan.files)} files) from {plan.root}")
        return build_archive(plan.files, plan.root, destination, executables=plan.executables,
                             unit=plan.name, cancel_event=cancel_event)

    def execute(self, plans: List[PackagePlan], timeout: Optional[float] = None,
                fail_fast: bool = False) -> PackagingReport:
        """Build the planned archives concurrently and collect the results."""
        report = PackagingReport()
        for plan in plans:
            if isinstance(plan.mode, PreBuilt):
                for name in plan.covers:
                    report.artifacts[name] = plan.mode.path

        builds = [plan for plan in plans if plan.archive_name]
        if not builds:
            return report

        cancel_event = threading.Event()
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(builds))) as executor:
            futures = {executor.submit(self._build, plan, cancel_event): plan for plan in builds}
            try:
                for future in as_completed(futures, timeout=timeout):
                    plan = futures[future]
                    try:
                        artifact = future.result()
                    except PackagingError as e:
                        logger.error(f"Failed to package {plan.name}: {e}")
                        if fail_fast:
                            self._abort(futures, cancel_event)
                            raise
                        for name in plan.covers:
                            report.failures[name] = e
                        continue
                    for name in plan.covers:
                        report.artifacts[name] = artifact
            except TimeoutError as e:
                self._abort(futures, cancel_event)
                raise PackagingTimeoutError(f"Packaging did not finish within {timeout} seconds",
                                            unit=self.service_name,
                                            root=str(self.service_path)) from e
        return report

    @staticmethod
    def _abort(futures: Iterable, cancel_event: threading.Event) -> None:
        cancel_event.set()
        for future in futures:
            future.cancel()

    def package_service(self, timeout: Optional[float] = None,
                        fail_fast: bool = False) -> PackagingReport:
        """Package every function and layer of the service."""
        logger.info(f"Packaging service {self.service_name}...")
        return self.execute(self.plan(), timeout=timeout, fail_fast=fail_fast)

    def _package_single(self, plan: PackagePlan, name: str, timeout: Optional[float]) -> str:
        report = self.execute([plan], timeout=timeout, fail_fast=True)
        return report.artifacts[name]

    def package_function(self, name: str, timeout: Optional[float] = None) -> str:
        """Package one function; a shared function yields the shared archive."""
        functions = self.function_units()
        unit = next((u for u in functions if u.name == name), None)
        if unit is None:
            raise ConfigurationError("Function not found in configuration", unit=name)
        if isinstance(unit.mode, Shared):
            plan = self._plan_shared([u for u in functions if isinstance(u.mode, Shared)])
        else:
            plan = self._plan_unit(unit)
        return self._package_single(plan, name, timeout)

    def package_layer(self, name: str, timeout: Optional[float] = None) -> str:
        """Package one layer into its own archive."""
        unit = next((u for u in self.layer_units() if u.name == name), None)
        if unit is None:
            raise ConfigurationError("Layer not found in configuration", unit=name)
        return self._package_single(self._plan_unit(unit), name, timeout)

    def report_results(self, report: PackagingReport) -> int:
        """Print summary of packaging results."""
        logger.info("\n" + "=" * 60)
        logger.info("PACKAGING SUMMARY")
        logger.info("=" * 60)

        for name, artifact in sorted(report.artifacts.items()):
            logger.info(f"{name}: {artifact}")
        for name, error in sorted(report.failures.items()):
            logger.error(f"{name}: FAILED - {error}")

        total = len(report.artifacts) + len(report.failures)
        logger.info(f"\nTotal: {len(report.artifacts)}/{total} units packaged successfully")
        if report.ok:
            return 0
        logger.warning(f"\n{len(report.failures)} unit(s) had issues")
        return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description='Package service functions and layers into deployment archives'
    )
    parser.add_argument('--config', default=DEFAULT_CONFIG_FILE, help='Service configuration file path')
    parser.add_argument('--output', help=f'Output directory, relative to the service directory (default: {DEFAULT_OUTPUT_DIR})')
    target = parser.add_mutually_exclusive_group()
    target.add_argument('--function', help='Package a single function')
    target.add_argument('--layer', help='Package a single layer')
    parser.add_argument('--max-workers', type=int, help='Maximum archives built concurrently')
    parser.add_argument('--timeout', type=float, help='Abandon packaging after this many seconds')
    parser.add_argument('--fail-fast', action='store_true', help='Stop at the first failed archive')

    args = parser.parse_args(argv)

    try:
        service = PackageService.from_config_file(
            args.config, output_dir=args.output, max_workers=args.max_workers
        )
        if args.function:
            report = PackagingReport({args.function: service.package_function(args.function, args.timeout)})
        elif args.layer:
            report = PackagingReport({args.layer: service.package_layer(args.layer, args.timeout)})
        else:
            report = service.package_service(timeout=args.timeout, fail_fast=args.fail_fast)
        exit_code = service.report_results(report)
    except (PackagingError, KeyboardInterrupt) as e:
        logger.error(f"Fatal error: {e}")
        exit_code = 1

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
