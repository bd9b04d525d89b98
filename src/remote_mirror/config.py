"""Static configuration for the mirroring service.

Reads the mirror settings from CLI args, environment variables, .env
files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    MIRROR_PATH1: First tree root, local or UNC path (required)
    MIRROR_PATH2: Second tree root, local or UNC path (required)
    MIRROR_CHECK_INTERVAL_SEC: Poll period in seconds (optional, default: 30)
    MIRROR_EXCLUDED_FILES: Comma-separated file name patterns (optional)
    MIRROR_EXCLUDED_FOLDERS: Comma-separated folder names (optional)
    MIRROR_LOGGER_VERBOSITY: Verbosity tier 1-3 (optional, default: 2)
    MIRROR_STATE_DIR: Catalog directory (optional, default: ~/.remote_mirror/state)
    MIRROR_RECYCLE_DIR: Per-tree folder for removed and overwritten entries
        (optional, default: .mirror_recycle; empty disables recycling)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigurationError
from .mirror.filters import FilterSet, split_patterns

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = str(Path.home() / ".remote_mirror" / "state")
DEFAULT_RECYCLE_DIR = ".mirror_recycle"


@dataclass
class Config:
    path1: str
    path2: str
    check_interval_sec: int = 30
    excluded_files: tuple[str, ...] = ()
    excluded_folders: tuple[str, ...] = ()
    logger_verbosity: int = 2
    state_dir: str = DEFAULT_STATE_DIR
    lock_wait_attempts: int = 30
    lock_wait_interval_sec: float = 1.0
    tombstone_retention_sec: int = 7 * 24 * 3600
    seed_empty_peer: bool = False
    recycle_dir: str = DEFAULT_RECYCLE_DIR

    @property
    def filters(self) -> FilterSet:
        """Configured exclusions plus the recycle folder."""
        folders = set(self.excluded_folders)
        if self.recycle_dir:
            folders.add(self.recycle_dir)
        return FilterSet.from_settings(self.excluded_files, folders)


def _is_within(inner: Path, outer: Path) -> bool:
    return inner == outer or inner.is_relative_to(outer)


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ConfigurationError if invalid.

    Reachability of the tree roots is checked by the scheduler at start,
    not here, so a config can be validated while a share is offline.

    Args:
        config: Config instance to validate.

    Raises:
        ConfigurationError: If a root is missing, the roots overlap, the
            state directory sits inside a root, or a number is out of range.
    """
    config.path1 = config.path1.strip()
    config.path2 = config.path2.strip()

    if not config.path1:
        raise ConfigurationError(
            "Path1 cannot be empty. Set MIRROR_PATH1 environment variable."
        )
    if not config.path2:
        raise ConfigurationError(
            "Path2 cannot be empty. Set MIRROR_PATH2 environment variable."
        )

    root1 = Path(config.path1).expanduser().resolve()
    root2 = Path(config.path2).expanduser().resolve()
    if _is_within(root1, root2) or _is_within(root2, root1):
        raise ConfigurationError(
            f"Path1 '{config.path1}' and Path2 '{config.path2}' must not "
            "be the same folder or nested in each other"
        )

    state_dir = Path(config.state_dir).expanduser().resolve()
    for root in (root1, root2):
        if _is_within(state_dir, root):
            raise ConfigurationError(
                f"State directory '{config.state_dir}' must not be inside "
                f"a mirrored tree ({root})"
            )

    if not (1 <= config.check_interval_sec <= 86400):
        raise ConfigurationError(
            f"Invalid CheckIntervalSec '{config.check_interval_sec}': "
            "must be a number between 1 and 86400"
        )
    if not (1 <= config.logger_verbosity <= 3):
        raise ConfigurationError(
            f"Invalid LoggerVerbosity '{config.logger_verbosity}': "
            "must be 1, 2 or 3"
        )

    config.recycle_dir = config.recycle_dir.strip()
    if config.recycle_dir and (
        config.recycle_dir in (".", "..")
        or any(sep in config.recycle_dir for sep in "/\\")
    ):
        raise ConfigurationError(
            f"Invalid RecycleDir '{config.recycle_dir}': must be a single "
            "folder name"
        )

    if not config.excluded_files:
        logger.info("No file filter specified")
    if not config.excluded_folders:
        logger.info("No folder filter specified")


def _env_int(key: str, low: int, high: int) -> int | None:
    """Return an int from env var *key*, or None if unset."""
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ConfigurationError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        )
    return value


def load_config(
    path1: str | None = None,
    path2: str | None = None,
    check_interval_sec: int | None = None,
    logger_verbosity: int | None = None,
    state_dir: str | None = None,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        path1: Override first tree root.
        path2: Override second tree root.
        check_interval_sec: Override poll period.
        logger_verbosity: Override verbosity tier.
        state_dir: Override catalog directory.
        yaml_fallbacks: Dict of values from the YAML ``mirror`` section.
            Used as fallback when CLI arg and env var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ConfigurationError: If a tree root is missing after checking all
            sources, or any value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- Tree roots: CLI > env > YAML > error ---

    final_path1 = path1 or os.getenv("MIRROR_PATH1") or fb.get("path1")
    if not final_path1:
        raise ConfigurationError(
            "Path1 not found. Set MIRROR_PATH1 environment variable, "
            "pass --path1 CLI argument, or add 'path1' to config.yml."
        )

    final_path2 = path2 or os.getenv("MIRROR_PATH2") or fb.get("path2")
    if not final_path2:
        raise ConfigurationError(
            "Path2 not found. Set MIRROR_PATH2 environment variable, "
            "pass --path2 CLI argument, or add 'path2' to config.yml."
        )

    # --- Numeric fields: CLI > env > YAML > default ---

    if check_interval_sec is not None:
        final_interval = check_interval_sec
    else:
        env_interval = _env_int("MIRROR_CHECK_INTERVAL_SEC", 1, 86400)
        final_interval = (
            env_interval
            if env_interval is not None
            else int(fb.get("check_interval_sec", 30))
        )

    if logger_verbosity is not None:
        final_verbosity = logger_verbosity
    else:
        env_verbosity = _env_int("MIRROR_LOGGER_VERBOSITY", 1, 3)
        final_verbosity = (
            env_verbosity
            if env_verbosity is not None
            else int(fb.get("logger_verbosity", 2))
        )

    # --- Filters: env > YAML > none ---

    env_files = os.getenv("MIRROR_EXCLUDED_FILES")
    files = (
        split_patterns(env_files)
        if env_files is not None
        else split_patterns(fb.get("excluded_files"))
    )
    env_folders = os.getenv("MIRROR_EXCLUDED_FOLDERS")
    folders = (
        split_patterns(env_folders)
        if env_folders is not None
        else split_patterns(fb.get("excluded_folders"))
    )

    final_state_dir = (
        state_dir
        or os.getenv("MIRROR_STATE_DIR")
        or fb.get("state_dir")
        or DEFAULT_STATE_DIR
    )

    env_recycle = os.getenv("MIRROR_RECYCLE_DIR")
    final_recycle = (
        env_recycle
        if env_recycle is not None
        else fb.get("recycle_dir", DEFAULT_RECYCLE_DIR)
    )

    config = Config(
        path1=final_path1,
        path2=final_path2,
        check_interval_sec=final_interval,
        excluded_files=tuple(sorted(files)),
        excluded_folders=tuple(sorted(folders)),
        logger_verbosity=final_verbosity,
        state_dir=final_state_dir,
        lock_wait_attempts=int(fb.get("lock_wait_attempts", 30)),
        lock_wait_interval_sec=float(fb.get("lock_wait_interval_sec", 1.0)),
        tombstone_retention_sec=int(
            fb.get("tombstone_retention_sec", 7 * 24 * 3600)
        ),
        seed_empty_peer=bool(fb.get("seed_empty_peer", False)),
        recycle_dir=final_recycle or "",
    )

    validate_config(config)

    return config
