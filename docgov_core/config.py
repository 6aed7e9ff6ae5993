"""
docgov Configuration System
===========================

Loads and manages configuration from docgov.yaml with environment variable overrides.
"""

import os
import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "docgov.yaml"


# =============================================================================
# Configuration Data Classes
# =============================================================================

@dataclass
class AuditConfig:
    """Audit scan limits and paging."""
    page_size: int = 200
    chunk_size: int = 100
    warn_threshold: int = 5000   # Soft limit: audit proceeds with a warning
    hard_limit: int = 20000      # Hard limit: audit is refused


@dataclass
class ReplacementConfig:
    """Bulk replacement settings."""
    hard_limit: int = 10000
    checkpoint_label: str = "Bulk replace"


@dataclass
class RetrySettings:
    """Retry behavior for transient host failures."""
    max_attempts: int = 3
    delays: List[float] = field(default_factory=lambda: [1.0, 2.0, 4.0])


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_dir: str = ".docgov/logs"
    events_log: str = "events.jsonl"


@dataclass
class DocGovConfig:
    """Root configuration container."""
    audit: AuditConfig = field(default_factory=AuditConfig)
    replacement: ReplacementConfig = field(default_factory=ReplacementConfig)
    retry: RetrySettings = field(default_factory=RetrySettings)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    version: str = "1"


# =============================================================================
# Configuration Loader
# =============================================================================

def find_config_file(start_path: Optional[Path] = None) -> Optional[Path]:
    """
    Find docgov.yaml by searching upward from start_path.

    Search order:
    1. start_path / docgov.yaml
    2. start_path / .docgov / docgov.yaml
    3. Parent directories (recursive)
    4. ~/.config/docgov/docgov.yaml

    Args:
        start_path: Starting directory (defaults to cwd)

    Returns:
        Path to config file or None if not found
    """
    if start_path is None:
        start_path = Path.cwd()

    current = Path(start_path).resolve()
    for _ in range(10):  # Max 10 levels up
        for candidate in (current / CONFIG_FILENAME, current / ".docgov" / CONFIG_FILENAME):
            if candidate.exists():
                return candidate

        parent = current.parent
        if parent == current:
            break
        current = parent

    user_config = Path.home() / ".config" / "docgov" / CONFIG_FILENAME
    if user_config.exists():
        return user_config

    return None


def load_config(config_path: Optional[Path] = None) -> DocGovConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Environment variables override config file values:
    - DOCGOV_LOG_LEVEL -> logging.level
    - DOCGOV_AUDIT_HARD_LIMIT -> audit.hard_limit
    - DOCGOV_AUDIT_WARN_THRESHOLD -> audit.warn_threshold
    - DOCGOV_REPLACE_HARD_LIMIT -> replacement.hard_limit
    - DOCGOV_RETRY_MAX_ATTEMPTS -> retry.max_attempts

    Args:
        config_path: Path to config file (auto-detected if None)

    Returns:
        DocGovConfig instance
    """
    config = DocGovConfig()

    if config_path is None:
        config_path = find_config_file()

    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
            config = _parse_config_dict(data)
        except (yaml.YAMLError, OSError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Failed to load config: {e}, using defaults")
            config = DocGovConfig()
    else:
        logger.info("No config file found, using defaults")

    config = _apply_env_overrides(config)
    _validate_config(config)

    return config


def _parse_config_dict(data: Dict[str, Any]) -> DocGovConfig:
    """Parse configuration dictionary into DocGovConfig."""
    config = DocGovConfig()

    if "audit" in data:
        audit = data["audit"]
        config.audit = AuditConfig(
            page_size=int(audit.get("page_size", config.audit.page_size)),
            chunk_size=int(audit.get("chunk_size", config.audit.chunk_size)),
            warn_threshold=int(audit.get("warn_threshold", config.audit.warn_threshold)),
            hard_limit=int(audit.get("hard_limit", config.audit.hard_limit)),
        )

    if "replacement" in data:
        rep = data["replacement"]
        config.replacement = ReplacementConfig(
            hard_limit=int(rep.get("hard_limit", config.replacement.hard_limit)),
            checkpoint_label=str(rep.get("checkpoint_label", config.replacement.checkpoint_label)),
        )

    if "retry" in data:
        retry = data["retry"]
        config.retry = RetrySettings(
            max_attempts=int(retry.get("max_attempts", config.retry.max_attempts)),
            delays=[float(d) for d in retry.get("delays", config.retry.delays)],
        )

    if "logging" in data:
        log = data["logging"]
        config.logging = LoggingConfig(
            level=log.get("level", config.logging.level),
            log_dir=log.get("log_dir", config.logging.log_dir),
            events_log=log.get("events_log", config.logging.events_log),
        )

    config.version = str(data.get("version", config.version))
    return config


def _env_int(name: str) -> Optional[int]:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}")
        return None


def _apply_env_overrides(config: DocGovConfig) -> DocGovConfig:
    """Apply environment variable overrides to config."""

    if os.environ.get("DOCGOV_LOG_LEVEL"):
        config.logging.level = os.environ["DOCGOV_LOG_LEVEL"]

    value = _env_int("DOCGOV_AUDIT_HARD_LIMIT")
    if value is not None:
        config.audit.hard_limit = value

    value = _env_int("DOCGOV_AUDIT_WARN_THRESHOLD")
    if value is not None:
        config.audit.warn_threshold = value

    value = _env_int("DOCGOV_REPLACE_HARD_LIMIT")
    if value is not None:
        config.replacement.hard_limit = value

    value = _env_int("DOCGOV_RETRY_MAX_ATTEMPTS")
    if value is not None:
        config.retry.max_attempts = value

    return config


def _validate_config(config: DocGovConfig) -> None:
    """Validate configuration and log warnings."""

    if config.audit.page_size <= 0:
        logger.warning(f"Invalid audit.page_size {config.audit.page_size}, defaulting to 200")
        config.audit.page_size = 200

    if config.audit.chunk_size <= 0:
        logger.warning(f"Invalid audit.chunk_size {config.audit.chunk_size}, defaulting to 100")
        config.audit.chunk_size = 100

    if config.audit.warn_threshold > config.audit.hard_limit:
        logger.warning(
            f"audit.warn_threshold ({config.audit.warn_threshold}) exceeds hard_limit "
            f"({config.audit.hard_limit}), clamping"
        )
        config.audit.warn_threshold = config.audit.hard_limit

    if config.retry.max_attempts < 1:
        logger.warning(f"Invalid retry.max_attempts {config.retry.max_attempts}, defaulting to 3")
        config.retry.max_attempts = 3

    if not config.retry.delays:
        logger.warning("Empty retry.delays, defaulting to [1, 2, 4]")
        config.retry.delays = [1.0, 2.0, 4.0]

    valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR")
    if str(config.logging.level).upper() not in valid_levels:
        logger.warning(f"Unknown log level '{config.logging.level}', defaulting to INFO")
        config.logging.level = "INFO"
    config.logging.level = str(config.logging.level).upper()


def config_to_dict(config: DocGovConfig) -> Dict[str, Any]:
    return {
        "version": config.version,
        "audit": {
            "page_size": config.audit.page_size,
            "chunk_size": config.audit.chunk_size,
            "warn_threshold": config.audit.warn_threshold,
            "hard_limit": config.audit.hard_limit,
        },
        "replacement": {
            "hard_limit": config.replacement.hard_limit,
            "checkpoint_label": config.replacement.checkpoint_label,
        },
        "retry": {
            "max_attempts": config.retry.max_attempts,
            "delays": list(config.retry.delays),
        },
        "logging": {
            "level": config.logging.level,
            "log_dir": config.logging.log_dir,
            "events_log": config.logging.events_log,
        },
    }


def save_config(config: DocGovConfig, path: Path) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: DocGovConfig instance
        path: Output path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        yaml.dump(config_to_dict(config), f, default_flow_style=False, sort_keys=False)

    logger.info(f"Configuration saved to: {path}")


# =============================================================================
# Global Config Instance
# =============================================================================

_global_config: Optional[DocGovConfig] = None


def get_config() -> DocGovConfig:
    """Get the global configuration instance (lazy-loaded)."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reload_config(config_path: Optional[Path] = None) -> DocGovConfig:
    """Reload configuration from file."""
    global _global_config
    _global_config = load_config(config_path)
    return _global_config
