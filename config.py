"""
Configuration management for genplan.

WHAT THIS FILE DOES:
-------------------
Loads and validates configuration from YAML files with sensible defaults.
Everything has a default, so genplan works with no config file at all.

CONFIG FILE LOCATION:
--------------------
Searched in order:
    1. --config PATH
    2. <project root>/.genplan/config.yaml
    3. ./genplan.yaml
    4. ~/.genplan/config.yaml

CONFIG FORMAT:
-------------
```yaml
models:
  claude:
    provider: "anthropic"
    model: "claude-sonnet-4-20250514"
    api_key_env: "ANTHROPIC_API_KEY"

generation:
  model: "claude"
  max_tokens: 8192
  temperature: 0.2

git:
  auto_commit: true
  create_feature_branches: true
  auto_push: false
  commit_message_prefix: "[genplan]"
  branch_prefix: "genplan-"

approval:
  show_preview: true
  show_diff: true
  auto_mode: false
  preview_lines: 20

storage:
  directory: ".genplan"

costs:
  daily_limit: 5.0
```
"""

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

from errors import ConfigError


# =============================================================================
# CONFIGURATION DATA CLASSES
# =============================================================================

@dataclass
class ModelConfig:
    """Configuration for a single model."""
    provider: str
    model: str
    api_key_env: Optional[str] = None
    base_url: Optional[str] = None

    def get_api_key(self) -> Optional[str]:
        """Get API key from environment variable."""
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None

    def to_dict(self) -> dict:
        result = {
            "provider": self.provider,
            "model": self.model,
        }
        if self.api_key_env:
            result["api_key_env"] = self.api_key_env
        if self.base_url:
            result["base_url"] = self.base_url
        return result


@dataclass
class GenerationConfig:
    """Which model answers build requests, and how."""
    model: str = "claude"
    max_tokens: int = 8192
    temperature: float = 0.2


@dataclass
class GitConfig:
    """Version control behaviour of the execution engine."""
    auto_commit: bool = True
    create_feature_branches: bool = True
    auto_push: bool = False
    commit_message_prefix: str = "[genplan]"
    branch_prefix: str = "genplan-"


@dataclass
class ApprovalConfig:
    """How operations are presented for review."""
    show_preview: bool = True
    show_diff: bool = True
    auto_mode: bool = False
    preview_lines: int = 20


@dataclass
class StorageConfig:
    """Where ledgers, checkpoints and usage logs live, relative to the project root."""
    directory: str = ".genplan"

    def path_for(self, project_root: Path) -> Path:
        directory = Path(self.directory).expanduser()
        if directory.is_absolute():
            return directory
        return Path(project_root) / directory


@dataclass
class CostConfig:
    daily_limit: Optional[float] = None


@dataclass
class Config:
    """
    Complete configuration for genplan.

    Loaded from a YAML file or created with defaults.
    """
    models: dict[str, ModelConfig] = field(default_factory=dict)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    git: GitConfig = field(default_factory=GitConfig)
    approval: ApprovalConfig = field(default_factory=ApprovalConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    costs: CostConfig = field(default_factory=CostConfig)

    def get_model(self, name: str) -> Optional[ModelConfig]:
        return self.models.get(name)

    def to_provider_config(self) -> dict:
        """Convert to the dict format expected by get_provider()."""
        return {
            "models": {
                name: model.to_dict()
                for name, model in self.models.items()
            }
        }

    def list_models(self) -> list[str]:
        return list(self.models.keys())


# =============================================================================
# DEFAULT CONFIGURATION
# =============================================================================

def get_default_config() -> Config:
    """
    Get the default configuration.

    Works out of the box as long as the API key environment variables are set.
    """
    return Config(
        models={
            "claude": ModelConfig(
                provider="anthropic",
                model="claude-sonnet-4-20250514",
                api_key_env="ANTHROPIC_API_KEY"
            ),
            "gpt4": ModelConfig(
                provider="openai",
                model="gpt-4o",
                api_key_env="OPENAI_API_KEY"
            ),
        },
        generation=GenerationConfig(),
        git=GitConfig(),
        approval=ApprovalConfig(),
        storage=StorageConfig(),
        costs=CostConfig(),
    )


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================

# Section name -> dataclass. Every key inside a section is optional.
SECTIONS = {
    "generation": GenerationConfig,
    "git": GitConfig,
    "approval": ApprovalConfig,
    "storage": StorageConfig,
    "costs": CostConfig,
}


def _parse_section(name: str, cls, data):
    """
    Build one section dataclass, keeping defaults for missing keys.

    Raises:
        ConfigError: If the section is not a mapping or has unknown keys
    """
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")

    unknown = set(data) - {f.name for f in fields(cls)}
    if unknown:
        raise ConfigError(f"Unknown key(s) in '{name}': {', '.join(sorted(unknown))}")

    return cls(**data)


def _parse_model_config(name: str, data) -> ModelConfig:
    if not isinstance(data, dict) or not {"provider", "model"} <= set(data):
        raise ConfigError(f"Model '{name}' needs at least 'provider' and 'model'")
    return _parse_section(f"models.{name}", ModelConfig, data)


def _parse_config(data) -> Config:
    """Parse a complete configuration; sections not in data keep their defaults."""
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML mapping")

    config = get_default_config()

    if "models" in data:
        config.models = {
            name: _parse_model_config(name, model_data)
            for name, model_data in (data["models"] or {}).items()
        }

    for name, cls in SECTIONS.items():
        if name in data:
            setattr(config, name, _parse_section(name, cls, data[name]))

    return config


def get_config_path(project_root: Optional[Path] = None) -> Optional[Path]:
    """
    Get the path to the active config file, if any exists.

    Returns:
        Path to config file or None if using defaults
    """
    default_paths = [
        Path("./genplan.yaml"),
        Path.home() / ".genplan" / "config.yaml",
    ]
    if project_root:
        default_paths.insert(0, Path(project_root) / ".genplan" / "config.yaml")

    for path in default_paths:
        if path.exists():
            return path

    return None


def load_config(path: Optional[Path] = None, project_root: Optional[Path] = None) -> Config:
    """
    Load configuration from a YAML file.

    Args:
        path: Explicit config file. Must exist if given.
        project_root: Project whose .genplan/config.yaml is tried first

    Returns:
        Loaded configuration (or defaults if no file is found)
    """
    if path:
        path = Path(path).expanduser()
        if path.exists():
            return load_config_from_file(path)
        raise FileNotFoundError(f"Config file not found: {path}")

    found = get_config_path(project_root)
    if found:
        return load_config_from_file(found)

    return get_default_config()


def load_config_from_file(path: Path) -> Config:
    """
    Load configuration from a specific file.

    Raises:
        FileNotFoundError: If file doesn't exist
        ConfigError: If the YAML is invalid or has the wrong shape
    """
    path = Path(path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    return _parse_config(data)


def save_config(config: Config, path: Path) -> None:
    """
    Write a configuration as YAML that load_config_from_file reads back.

    Args:
        config: Configuration to save
        path: Output path (parent directories are created)
    """
    data = {"models": {name: model.to_dict() for name, model in config.models.items()}}
    for name in SECTIONS:
        data[name] = asdict(getattr(config, name))

    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
