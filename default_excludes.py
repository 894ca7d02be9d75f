"""
Baseline exclude patterns applied in front of every package's own excludes.
"""

from pathlib import PurePath
from typing import Iterable, List, Optional, Sequence

DEFAULT_EXCLUDES = (
    '.git/**',
    '.gitignore',
    '.DS_Store',
    'npm-debug.log',
    'yarn-*.log',
    '.serverless/**',
    '.serverless_plugins/**',
)

DEFAULT_PLUGINS_LOCAL_PATH = '.serverless_plugins'

DOTENV_EXCLUDES = ('/.env', '/.env.*')


def _union(*lists: Iterable[str]) -> List[str]:
    result: List[str] = []
    for items in lists:
        for item in items:
            if item not in result:
                result.append(item)
    return result


def get_default_excludes(config_file_name: str, plugins_local_path: Optional[str] = None,
                         use_dotenv: bool = False,
                         base: Sequence[str] = DEFAULT_EXCLUDES) -> List[str]:
    """Return the baseline excludes for the active configuration.

    Depends only on configuration: the service config file's name, the
    plugin local path and whether dotenv loading is on. Never on the tree.
    The config file and dotenv files are anchored at the service root.
    """
    config_name = PurePath(config_file_name).name if config_file_name else None
    return _union(
        base,
        [f'/{config_name}'] if config_name else [],
        [plugins_local_path] if plugins_local_path else [],
        DOTENV_EXCLUDES if use_dotenv else [],
    )


def get_directory_excludes(directories: Iterable[str]) -> List[str]:
    """Exclude whole directories inside the service tree, such as layer paths."""
    excludes = []
    for directory in directories:
        posix = PurePath(directory).as_posix().strip('/')
        while posix.startswith('./'):
            posix = posix[2:]
        if not posix or posix == '.' or posix.startswith('..'):
            continue
        excludes.append(f'{posix}/**')
    return excludes
