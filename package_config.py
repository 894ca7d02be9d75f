"""
Load and validate the service configuration consumed by the packager.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from package_errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = 'serverless.yml'
DEFAULT_CONCURRENCY = 4

PATTERN_FIELDS = ('include', 'exclude')


def load_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load configuration from a YAML file and validate it."""
    config_path = Path(config_path)
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError("Configuration file not found", root=str(config_path)) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Error parsing YAML configuration: {e}",
                                 root=str(config_path)) from e

    if not isinstance(config, dict):
        raise ConfigurationError("Configuration must be a mapping", root=str(config_path))

    validate_config(config)
    logger.info(f"Loaded configuration from {config_path}")
    return config


def _check_mapping(value: Any, what: str, unit: Optional[str] = None) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"'{what}' must be a mapping", unit=unit)
    return value


def _check_package_block(package: Dict[str, Any], unit: str) -> None:
    for field in PATTERN_FIELDS:
        patterns = package.get(field)
        if patterns is None or isinstance(patterns, str):
            continue
        if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
            raise ConfigurationError(f"'{field}' must be a string or a list of strings", unit=unit)

    individually = package.get('individually')
    if individually is not None and not isinstance(individually, bool):
        raise ConfigurationError("'individually' must be true or false", unit=unit)

    artifact = package.get('artifact')
    if artifact is not None and (not isinstance(artifact, str) or not artifact.strip()):
        raise ConfigurationError("'artifact' must be a non-empty path", unit=unit)


def validate_config(config: Dict[str, Any]) -> None:
    """Validate configuration structure and field types."""
    service = config.get('service')
    if isinstance(service, dict):
        service = service.get('name')
    if not isinstance(service, str) or not service.strip():
        raise ConfigurationError("Configuration missing required field: 'service'")

    _check_mapping(config.get('provider'), 'provider')
    plugins = config.get('plugins')
    if plugins is not None and not isinstance(plugins, (dict, list)):
        raise ConfigurationError("'plugins' must be a mapping or a list")

    package = _check_mapping(config.get('package'), 'package', service)
    _check_package_block(package, service)
    concurrency = package.get('concurrency', DEFAULT_CONCURRENCY)
    if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
        raise ConfigurationError("'package.concurrency' must be a positive integer", unit=service)

    functions = _check_mapping(config.get('functions'), 'functions')
    for name, func in functions.items():
        func = _check_mapping(func, f'functions.{name}', name)
        _check_package_block(_check_mapping(func.get('package'), 'package', name), name)

    layers = _check_mapping(config.get('layers'), 'layers')
    for name, layer in layers.items():
        layer = _check_mapping(layer, f'layers.{name}', name)
        path = layer.get('path')
        if not isinstance(path, str) or not path.strip():
            raise ConfigurationError("Layer missing required field: 'path'", unit=name)
        _check_package_block(layer, name)
        _check_package_block(_check_mapping(layer.get('package'), 'package', name), name)


def get_service_name(config: Dict[str, Any]) -> str:
    service = config['service']
    if isinstance(service, dict):
        return service['name']
    return service


def get_plugins_local_path(config: Dict[str, Any]) -> Optional[str]:
    """Return plugins.localPath, or None when plugins are declared as a plain list."""
    plugins = config.get('plugins')
    if isinstance(plugins, dict):
        return plugins.get('localPath')
    return None
