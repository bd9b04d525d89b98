"""YAML config files for remote_mirror.

Finds config files by convention (explicit env path, project folder, user
folder), merges them so the more specific file wins per section, and
expands ${VAR} references in string values.

Usage:
    from remote_mirror.config_loader import load_hierarchical_config

    config = load_hierarchical_config()
"""

import logging
import os
import re
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "REMOTE_MIRROR_CONFIG"

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# Matches ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` patterns with env values.

    * ``${VAR}`` is replaced with ``os.environ.get(VAR, "")``.
    * ``${VAR:-default}`` uses *default* when VAR is unset or empty.
    * Literal ``${`` with no closing ``}`` is left untouched.

    Useful for UNC roots that differ per host, e.g.
    ``path2: "\\\\${MIRROR_HOST}\\share"``.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    """Walk a nested dict/list and interpolate env vars in all strings."""
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


def load_yaml_file(path: Path) -> Any:
    """Parse one YAML file with the safe loader."""
    with open(path, "r", encoding="utf-8") as fh:
        return yaml.safe_load(fh)


# ---------------------------------------------------------------------------
# 2. Convention-based file discovery
# ---------------------------------------------------------------------------

PROJECT_DIR = ".remote_mirror"
PROJECT_FILE_NAMES = ("config.yml", "config.yaml")


def _global_config_path() -> Path:
    return Path.home() / ".config" / "remote_mirror" / "config.yml"


def _candidate_paths() -> Iterator[Path]:
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        yield Path(explicit).expanduser().resolve()
    project = Path.cwd() / PROJECT_DIR
    for name in PROJECT_FILE_NAMES:
        yield project / name
    yield _global_config_path()


def discover_config_files() -> list[Path]:
    """List the config files present on disk, highest precedence first.

    The order is the ``REMOTE_MIRROR_CONFIG`` path, then
    ``.remote_mirror/config.yml`` and ``.remote_mirror/config.yaml`` under
    the working directory, then ``~/.config/remote_mirror/config.yml``.
    """
    return [path for path in _candidate_paths() if path.is_file()]


# ---------------------------------------------------------------------------
# 3. Config bootstrapping
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# remote-mirror configuration
#
# Tree roots can also be set via environment variables:
#   MIRROR_PATH1, MIRROR_PATH2, MIRROR_CHECK_INTERVAL_SEC,
#   MIRROR_EXCLUDED_FILES, MIRROR_EXCLUDED_FOLDERS, MIRROR_LOGGER_VERBOSITY,
#   MIRROR_RECYCLE_DIR
#
# mirror:
#   path1: /srv/share-a
#   path2: "\\\\\\\\fileserver\\\\share-b"
#   check_interval_sec: 30
#   excluded_files: "*.tmp,~$*,Thumbs.db"
#   excluded_folders: ".git,node_modules"
#   logger_verbosity: 2
#   state_dir: ~/.remote_mirror/state
#   seed_empty_peer: false
#   recycle_dir: .mirror_recycle
#
# logging:
#   level: INFO
#   file: null
#   format: text
"""


def resolve_config_path() -> Path:
    """Return the config file in effect, or where a new one would go.

    Does not create anything; see ``ensure_config()``.
    """
    found = discover_config_files()
    return found[0] if found else Path.cwd() / PROJECT_DIR / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Write the starter config to *target* unless a file is already there.

    Without *target* the path comes from ``resolve_config_path()``, so an
    existing config anywhere in the search order is returned untouched.
    """
    path = target if target is not None else resolve_config_path()
    if path.is_file():
        logger.debug("Using existing config %s", path)
        return path

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", path)
    return path


# ---------------------------------------------------------------------------
# 4. Hierarchical merge
# ---------------------------------------------------------------------------


def _read_mapping(path: Path) -> dict[str, Any]:
    logger.debug("Reading config %s", path)
    try:
        data = load_yaml_file(path)
    except yaml.YAMLError as exc:
        logger.error("Config file %s is not valid YAML: %s", path, exc)
        raise

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(
            "Config file %s has non-dict root (%s), skipping",
            path,
            type(data).__name__,
        )
        return {}
    return data


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered config file into one dict.

    Higher-precedence files replace whole top-level sections of lower ones
    (no deep merge), and ``${VAR}`` references are expanded afterwards.
    No config files at all gives an empty dict.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        merged.update(_read_mapping(path))
    return _interpolate_recursive(merged)
