"""
Configuration management and loading.

Reads the YAML configuration file and applies environment variable
overrides. Validation is strict: unknown keys and wrongly typed values are
rejected so that a typo never silently falls back to a default.
"""

import os
import tempfile
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from ..core.errors import ConfigurationError

DEFAULT_CONFIG_PATH = "issue-resolver.yaml"
ENV_PREFIX = "ISSUE_RESOLVER_"
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


@dataclass(frozen=True)
class AiAgentConfig:
    """AI vendor access."""
    model: Optional[str] = None
    token: Optional[str] = None
    base_url: Optional[str] = None
    timeout_seconds: float = 600.0

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ConfigurationError("ai_agent.timeout_seconds must be > 0")


@dataclass(frozen=True)
class CodeAnalysisConfig:
    """Static-analysis service access."""
    type: Optional[str] = "sonarqube"
    project_key: Optional[str] = None
    server_url: Optional[str] = None
    token: Optional[str] = None
    language: str = "cs"


@dataclass(frozen=True)
class Credentials:
    username: Optional[str] = None
    password: Optional[str] = None


@dataclass(frozen=True)
class SourceCodeConfig:
    """Repository to fix and how fixes are committed."""
    repository: Optional[str] = None
    branch: Optional[str] = None
    commit_message_template: Optional[str] = None
    local_path: str = field(default_factory=lambda: os.path.join(tempfile.gettempdir(), "_git"))
    file_extension: str = "*.cs"
    credentials: Credentials = field(default_factory=Credentials)


@dataclass(frozen=True)
class ReportingConfig:
    db_path: str = "issue-resolver.db"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self):
        if self.level.upper() not in LOG_LEVELS:
            raise ConfigurationError(f"logging.level must be one of: {', '.join(LOG_LEVELS)}")


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    ai_agent: AiAgentConfig = field(default_factory=AiAgentConfig)
    code_analysis: CodeAnalysisConfig = field(default_factory=CodeAnalysisConfig)
    source_code: SourceCodeConfig = field(default_factory=SourceCodeConfig)
    reporting: ReportingConfig = field(default_factory=ReportingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_SECTIONS = {
    "ai_agent": AiAgentConfig,
    "code_analysis": CodeAnalysisConfig,
    "source_code": SourceCodeConfig,
    "reporting": ReportingConfig,
    "logging": LoggingConfig,
}


def load_config(path: Optional[str] = DEFAULT_CONFIG_PATH, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Load and validate the application configuration.

    Values from environment variables named
    ``ISSUE_RESOLVER_<SECTION>__<KEY>`` override values from the file,
    e.g. ``ISSUE_RESOLVER_AI_AGENT__TOKEN``.

    Args:
        path: Path to YAML configuration file, None to use only the environment
        environ: Environment to read overrides from, defaults to os.environ

    Returns:
        Validated AppConfig object

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    raw_config: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            try:
                raw_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in config file {path}: {e}")

    if not isinstance(raw_config, dict):
        raise ConfigurationError("Configuration must be a mapping")

    _apply_env_overrides(raw_config, os.environ if environ is None else environ)

    unknown_keys = set(raw_config.keys()) - set(_SECTIONS)
    if unknown_keys:
        raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown_keys)}")

    sections = {}
    for name, section_cls in _SECTIONS.items():
        data = raw_config.get(name) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"'{name}' must be a dictionary")
        sections[name] = _parse_section(data, section_cls, name)
    return AppConfig(**sections)


def _apply_env_overrides(raw_config: Dict[str, Any], environ: Mapping[str, str]) -> None:
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        keys = [part.lower() for part in name[len(ENV_PREFIX):].split("__")]
        if len(keys) < 2 or not all(keys):
            continue
        target = raw_config
        for key in keys[:-1]:
            child = target.get(key)
            if child is None:
                child = target[key] = {}
            if not isinstance(child, dict):
                raise ConfigurationError(f"Cannot override {name}: '{key}' is not a section")
            target = child
        target[keys[-1]] = value


def _parse_section(data: Dict[str, Any], section_cls, path: str):
    """Build a section dataclass from its raw mapping.

    Raises:
        ConfigurationError: On unknown keys or values of the wrong type
    """
    section_fields = {item.name: item for item in fields(section_cls)}
    unknown_keys = set(data.keys()) - set(section_fields)
    if unknown_keys:
        raise ConfigurationError(f"Unknown keys in {path}: {sorted(unknown_keys)}")

    values = {}
    for key, value in data.items():
        if value is None:
            continue
        key_path = f"{path}.{key}"
        if key == "credentials":
            if not isinstance(value, dict):
                raise ConfigurationError(f"'{key_path}' must be a dictionary")
            values[key] = _parse_section(value, Credentials, key_path)
        elif key == "timeout_seconds":
            try:
                values[key] = float(value)
            except (TypeError, ValueError):
                raise ConfigurationError(f"'{key_path}' must be a number")
        elif isinstance(value, (dict, list)):
            raise ConfigurationError(f"'{key_path}' must be a scalar value")
        else:
            values[key] = str(value)

    try:
        return section_cls(**values)
    except ValueError as e:
        raise ConfigurationError(str(e))
