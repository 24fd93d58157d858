"""
MDGRAPH CONFIG - Layered Application Configuration

Configuration is merged from three sources, lowest priority first:
1. Defaults (AppConfig())
2. A config file: --config FILE, else ./config.toml, else ./config.json
3. CLI flags (--root-dir, --template-phantom-node)

Files are decoded into msgspec structs, so unknown keys are ignored and
wrong types fail loudly with the offending path.

Usage:
    config = load_config(config_path=None, root_dir="/notes")
    state = AppState(config)
"""
import logging
import threading
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional, Union

import msgspec

from core.reference_index import ReferenceIndex


logger = logging.getLogger("mdgraph.config")

DEFAULT_CONFIG_FILES = ("config.toml", "config.json")


class ConfigError(Exception):
    """Raised when a config file cannot be read or validated."""
    pass


# =============================================================================
# CONFIG STRUCTS
# =============================================================================

class PreviewerConfig(msgspec.Struct, kw_only=True):
    """Note preview settings."""
    offset: int = 0                     # Leading lines skipped when reading a note


class WatcherConfig(msgspec.Struct, kw_only=True):
    """Filesystem watch settings."""
    debounce_ms: int = 300              # Quiet window per path
    queue_size: int = 1024              # Bound of the notification channel


class JournalConfig(msgspec.Struct, kw_only=True):
    """Delta journal settings."""
    enabled: bool = False               # Write emitted events to JSONL files
    log_path: str = "./workspace/logs"  # Directory for journal files
    buffer_size: int = 10000            # In-memory ring buffer size


class AppConfig(msgspec.Struct, kw_only=True):
    """Complete application configuration."""
    root_dir: Optional[str] = None
    template_phantom_node: Optional[str] = None
    previewer: PreviewerConfig = msgspec.field(default_factory=PreviewerConfig)
    watcher: WatcherConfig = msgspec.field(default_factory=WatcherConfig)
    journal: JournalConfig = msgspec.field(default_factory=JournalConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        try:
            return msgspec.convert(data, type=cls)
        except msgspec.ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "AppConfig":
        """Load a TOML or JSON config file (by extension)."""
        path = Path(path)
        try:
            raw = path.read_bytes()
        except OSError as e:
            raise ConfigError(f"Error reading configuration file {path}: {e}") from e

        try:
            if path.suffix == ".toml":
                data = tomllib.loads(raw.decode("utf-8"))
            else:
                data = msgspec.json.decode(raw)
        except (tomllib.TOMLDecodeError, msgspec.DecodeError, UnicodeDecodeError) as e:
            raise ConfigError(f"Error parsing configuration file {path}: {e}") from e

        return cls.from_dict(data)

    def merge(self, override: "AppConfig") -> "AppConfig":
        """
        Overlay the CLI-settable fields of `override`.

        Previewer, watcher and journal sections only come from files.
        """
        return msgspec.structs.replace(
            self,
            root_dir=override.root_dir or self.root_dir,
            template_phantom_node=override.template_phantom_node or self.template_phantom_node,
        )


def find_default_config(search_dir: Optional[Path] = None) -> Optional[Path]:
    """Return the first default config file present in `search_dir` (cwd)."""
    base = search_dir or Path.cwd()
    for name in DEFAULT_CONFIG_FILES:
        candidate = base / name
        if candidate.exists():
            return candidate
    return None


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    root_dir: Optional[str] = None,
    template_phantom_node: Optional[str] = None,
    search_dir: Optional[Path] = None,
) -> AppConfig:
    """
    Build the final configuration.

    Args:
        config_path: Explicit config file; errors propagate
        root_dir: CLI override for the notes directory
        template_phantom_node: CLI override for the phantom template
        search_dir: Where to look for default config files (cwd)

    Raises:
        ConfigError: If an explicit config file is unreadable or invalid
    """
    if config_path is not None:
        logger.info(f"Loading configuration from {config_path}")
        base = AppConfig.from_file(config_path)
    else:
        default_path = find_default_config(search_dir)
        if default_path is None:
            logger.info("No config file found, using defaults")
            base = AppConfig()
        else:
            try:
                base = AppConfig.from_file(default_path)
                logger.info(f"Loaded configuration from {default_path}")
            except ConfigError as e:
                logger.warning(f"{e}; using defaults")
                base = AppConfig()

    config = base.merge(AppConfig(
        root_dir=root_dir,
        template_phantom_node=template_phantom_node,
    ))

    logger.info(
        f"Configuration: root_dir={config.root_dir!r}, "
        f"previewer.offset={config.previewer.offset}, "
        f"watcher.debounce_ms={config.watcher.debounce_ms}"
    )
    return config


# =============================================================================
# APPLICATION STATE
# =============================================================================

class AppState:
    """
    Shared state for the API and the watcher.

    The config is swapped under its own lock; the ReferenceIndex carries
    its own lock for delta processing.
    """

    def __init__(self, config: AppConfig, index: Optional[ReferenceIndex] = None):
        self._config = config
        self._config_lock = threading.Lock()
        self.index = index if index is not None else ReferenceIndex()

    def get_config(self) -> AppConfig:
        with self._config_lock:
            return self._config

    def update_config(self, config: AppConfig) -> None:
        with self._config_lock:
            self._config = config
