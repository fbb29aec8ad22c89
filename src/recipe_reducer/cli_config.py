"""
Configuration management for recipe-reducer.

Provides configurable settings for the reduction engine, output rendering,
input validation limits and logging.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from rich.console import Console

from .error_handling import ErrorCategory, get_error_handler

console = Console(stderr=True)

CONFIG_FILE_NAMES = (
    ".recipe-reducer.json",
    ".recipe-reducer.yaml",
    ".recipe-reducer.yml",
)


@dataclass
class ReduceConfig:
    """Core reduction configuration."""

    root_member: Optional[str] = None
    strict: bool = False


@dataclass
class OutputConfig:
    """Reduced recipe rendering configuration."""

    indent: Optional[int] = None
    summary: bool = True
    output_format: str = "console"


@dataclass
class SecurityConfig:
    """Input validation configuration."""

    max_file_size_mb: int = 50
    allowed_file_extensions: List[str] = field(default_factory=lambda: [".json"])

    @property
    def max_file_size_bytes(self) -> int:
        """Convert MB to bytes for internal use."""
        return self.max_file_size_mb * 1024 * 1024


@dataclass
class LoggingConfig:
    """Logging configuration."""

    log_level: str = "WARNING"


@dataclass
class ComprehensiveConfig:
    """Main configuration containing all subsections."""

    reduce: ReduceConfig = field(default_factory=ReduceConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Global configuration instance
_global_config: Optional[ComprehensiveConfig] = None

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_OUTPUT_FORMATS = {"console", "json"}


def validate_config_values(config: ComprehensiveConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Args:
        config: Configuration to validate

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []

    if config.reduce.root_member is not None and not str(config.reduce.root_member).strip():
        errors.append("reduce.root_member must not be empty")

    if config.output.indent is not None:
        if not isinstance(config.output.indent, int) or config.output.indent < 0:
            errors.append("output.indent must be a non-negative integer or null")
    if config.output.output_format not in _VALID_OUTPUT_FORMATS:
        errors.append(
            f"output.output_format must be one of {sorted(_VALID_OUTPUT_FORMATS)}"
        )

    if config.security.max_file_size_mb <= 0:
        errors.append("security.max_file_size_mb must be positive")
    if not config.security.allowed_file_extensions:
        errors.append("security.allowed_file_extensions must not be empty")

    if str(config.logging.log_level).upper() not in _VALID_LOG_LEVELS:
        errors.append(f"logging.log_level must be one of {sorted(_VALID_LOG_LEVELS)}")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from file."""
    if not config_path.exists():
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() in [".yaml", ".yml"]:
                data = yaml.safe_load(f)
            elif config_path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                console.print(
                    f"⚠️  Unsupported config format: {config_path.suffix}", style="yellow"
                )
                return None
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(
            f"⚠️  Error loading config from {config_path}: {e}", style="yellow"
        )
        return None

    if data is None:
        return {}
    if not isinstance(data, dict):
        console.print(
            f"⚠️  Config file {config_path} must contain a mapping", style="yellow"
        )
        return None
    return data


def find_config_file() -> Optional[Path]:
    """Find config file in the working directory."""
    for name in CONFIG_FILE_NAMES:
        location = Path.cwd() / name
        if location.exists():
            return location

    return None


def apply_config_section(
    config: Any, section_data: Dict[str, Any], section_name: str
) -> None:
    """Apply configuration from dictionary to config section."""
    if not isinstance(section_data, dict):
        console.print(
            f"⚠️  Config section {section_name} must be a mapping", style="yellow"
        )
        return

    for key, value in section_data.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            console.print(
                f"⚠️  Unknown config key in {section_name}: {key}", style="yellow"
            )


def build_config(file_config: Optional[Dict[str, Any]]) -> ComprehensiveConfig:
    """Build a configuration from defaults overlaid with file data."""
    config = ComprehensiveConfig()
    if not file_config:
        return config

    for section_name in ("reduce", "output", "security", "logging"):
        if section_name in file_config:
            apply_config_section(
                getattr(config, section_name), file_config[section_name], section_name
            )

    for key in file_config:
        if key not in ("reduce", "output", "security", "logging"):
            console.print(f"⚠️  Unknown config section: {key}", style="yellow")

    return config


def load_config(config_path: Optional[Path] = None) -> ComprehensiveConfig:
    """Load configuration from an explicit path or the working directory."""
    global _global_config

    if _global_config is not None and config_path is None:
        return _global_config

    path = config_path or find_config_file()
    file_config = load_config_file(path) if path else None
    config = build_config(file_config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")
        console.print("Using default values for invalid settings.", style="yellow")
        get_error_handler().warning(
            ErrorCategory.CONFIGURATION,
            "Invalid configuration values replaced by defaults",
            "cli_config",
            "load_config",
            details={"path": str(path), "errors": validation_errors},
        )
        config = _repair_config(config)

    _global_config = config
    return config


def _repair_config(config: ComprehensiveConfig) -> ComprehensiveConfig:
    """Reset each invalid section back to its defaults."""
    defaults = ComprehensiveConfig()
    for error in validate_config_values(config):
        section_name = error.split(".", 1)[0]
        setattr(config, section_name, getattr(defaults, section_name))
    return config


def get_config() -> ComprehensiveConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Generate a sample configuration file."""
    sample_config = {
        "reduce": {
            "root_member": None,
            "strict": False,
        },
        "output": {
            "indent": None,
            "summary": True,
            "output_format": "console",
        },
        "security": {
            "max_file_size_mb": 50,
            "allowed_file_extensions": [".json"],
        },
        "logging": {
            "log_level": "WARNING",
        },
    }

    return json.dumps(sample_config, indent=2)
