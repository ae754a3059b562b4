"""Configuration loader for Garden.

This module loads configuration from config.yaml and environment variables.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field
from dotenv import load_dotenv

from providers.base import ProviderConfig, ProviderType


# Roles that talk to an oracle. Each can be pointed at a different provider.
GENERATOR_ROLE = "generator"
QUALITY_GATE_ROLE = "quality_gate"


@dataclass
class PipelineConfig:
    """Retry and context-growth limits for the stage pipeline."""

    error_budget: int = 15
    diagnostic_tail_lines: int = 25
    quality_parse_retries: int = 5
    stages: List[str] = field(default_factory=lambda: [
        "interface_definition",
        "server_implementation",
        "container_build",
        "usage_example",
    ])


@dataclass
class VerificationConfig:
    """External verification command configuration."""

    default_timeout: int = 600
    max_concurrent_container_builds: int = 1
    commands: Dict[str, str] = field(default_factory=dict)
    timeouts: Dict[str, int] = field(default_factory=dict)


@dataclass
class DockerConfig:
    """Container runtime configuration."""

    network: str = "seedlings"
    launch_on_done: bool = True
    ports: List[int] = field(default_factory=lambda: [8000, 8001])
    platform: str = "auto"


@dataclass
class DatabaseConfig:
    """Database configuration."""

    url: str = "sqlite:///garden.sqlite3"
    echo: bool = False


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "text"
    file: Optional[str] = "logs/garden.log"


@dataclass
class WorkspaceConfig:
    """Workspace configuration."""

    base_path: str = "./repos/default"


@dataclass
class Config:
    """Main configuration for Garden."""

    active_provider: str = "openai"
    providers: Dict[str, ProviderConfig] = field(default_factory=dict)
    agent_providers: Dict[str, str] = field(default_factory=dict)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    docker: DockerConfig = field(default_factory=DockerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)

    def get_provider_config(self, provider_name: Optional[str] = None) -> ProviderConfig:
        """Get configuration for a specific provider.

        Args:
            provider_name: Name of the provider. If None, returns active provider.

        Returns:
            ProviderConfig for the specified provider.

        Raises:
            KeyError: If provider not found.
        """
        name = provider_name or self.active_provider
        if name not in self.providers:
            raise KeyError(f"Provider '{name}' not found in configuration")
        return self.providers[name]

    def get_role_provider(self, role: str) -> ProviderConfig:
        """Get provider configuration for an oracle role.

        Args:
            role: ``generator`` or ``quality_gate``.

        Returns:
            ProviderConfig for the role's configured provider.
        """
        provider_name = self.agent_providers.get(role, self.active_provider)
        return self.get_provider_config(provider_name)


def _find_config_path(config_path: Optional[str]) -> Path:
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        return path

    env_path = os.getenv("GARDEN_CONFIG")
    if env_path:
        return _find_config_path(env_path)

    possible_paths = [
        Path("config.yaml"),
        Path("backend/config.yaml"),
        Path("../config.yaml"),
    ]
    for path in possible_paths:
        if path.exists():
            return path

    raise FileNotFoundError("config.yaml not found in default locations")


def _parse_provider(name: str, provider_data: Dict[str, Any]) -> ProviderConfig:
    provider_type = ProviderType(provider_data['type'])

    # Load API key from environment if not in config
    if 'api_key_env' in provider_data:
        api_key = os.getenv(provider_data['api_key_env'])
    elif provider_type == ProviderType.OPENAI:
        api_key = os.getenv('OPENAI_API_KEY')
    else:
        api_key = os.getenv('ANTHROPIC_API_KEY')

    base_url = provider_data.get('base_url')
    if provider_type == ProviderType.OPENAI:
        base_url = os.getenv('OPENAI_BASE_URL', base_url)

    return ProviderConfig(
        name=name,
        type=provider_type,
        base_url=base_url,
        api_key=api_key,
        api_key_env=provider_data.get('api_key_env'),
        model=provider_data.get('model', ''),
        cost_per_1k_input_tokens=provider_data.get('cost_per_1k_input_tokens', 0.0),
        cost_per_1k_output_tokens=provider_data.get('cost_per_1k_output_tokens', 0.0),
        temperature=provider_data.get('temperature', 0.3),
        max_tokens=provider_data.get('max_tokens', 2048),
        timeout=provider_data.get('timeout', 300),
        extra_params=provider_data.get('extra_params', {})
    )


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from YAML file and environment variables.

    Args:
        config_path: Path to config.yaml file. If None, uses $GARDEN_CONFIG or
            looks in default locations.

    Returns:
        Loaded Config object.

    Raises:
        FileNotFoundError: If config file not found.
        yaml.YAMLError: If config file is invalid.
    """
    load_dotenv()

    path = _find_config_path(config_path)
    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}

    providers = {
        name: _parse_provider(name, provider_data)
        for name, provider_data in data.get('providers', {}).items()
    }

    pipeline_data = data.get('pipeline', {})
    pipeline = PipelineConfig(
        error_budget=int(pipeline_data.get('error_budget', 15)),
        diagnostic_tail_lines=int(pipeline_data.get('diagnostic_tail_lines', 25)),
        quality_parse_retries=int(pipeline_data.get('quality_parse_retries', 5)),
    )
    if 'stages' in pipeline_data:
        pipeline.stages = [str(s) for s in pipeline_data['stages']]

    verify_data = data.get('verification', {})
    verification = VerificationConfig(
        default_timeout=int(verify_data.get('default_timeout', 600)),
        max_concurrent_container_builds=int(verify_data.get('max_concurrent_container_builds', 1)),
        commands=dict(verify_data.get('commands') or {}),
        timeouts={k: int(v) for k, v in (verify_data.get('timeouts') or {}).items()},
    )

    docker_data = data.get('docker', {})
    docker = DockerConfig(
        network=docker_data.get('network', 'seedlings'),
        launch_on_done=bool(docker_data.get('launch_on_done', True)),
        ports=[int(p) for p in docker_data.get('ports', [8000, 8001])],
        platform=docker_data.get('platform', 'auto'),
    )

    # DATABASE_URL env var overrides yaml
    db_data = data.get('database', {})
    database = DatabaseConfig(
        url=os.getenv('DATABASE_URL', db_data.get('url', 'sqlite:///garden.sqlite3')),
        echo=bool(db_data.get('echo', False)),
    )

    log_data = data.get('logging', {})
    logging_config = LoggingConfig(
        level=log_data.get('level', 'INFO'),
        format=log_data.get('format', 'text'),
        file=log_data.get('file', 'logs/garden.log')
    )

    ws_data = data.get('workspace', {})
    workspace = WorkspaceConfig(
        base_path=ws_data.get('base_path', './repos/default'),
    )

    return Config(
        active_provider=data.get('active_provider', 'openai'),
        providers=providers,
        agent_providers=data.get('agent_providers', {}),
        pipeline=pipeline,
        verification=verification,
        docker=docker,
        database=database,
        logging=logging_config,
        workspace=workspace
    )
