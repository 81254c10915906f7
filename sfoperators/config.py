"""
Configuration management for sfoperators.

Loads config.yaml from the sfoperators home directory
($SFOPERATORS_HOME, default ~/.config/sfoperators). An optional
``env_file`` entry is loaded into the environment with python-dotenv.
"""

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from sfoperators.constants import (
    DEFAULT_LOCK_TTL,
    DEFAULT_TIMEOUTS,
    DEFAULT_WORKER_LIMIT,
    MAX_CONFLICT_RETRIES,
    POLL_INTERVAL,
    RETRY_DELAY,
    WATCH_TIMEOUT,
    WATCHER_ERROR_DELAY,
)
from sfoperators.errors import ConfigurationError
from sfoperators.planner.network import Networks, Segmentation
from sfoperators.schemas import TaskType

HOME_ENV_VAR = "SFOPERATORS_HOME"
OPERATOR_ID_ENV_VAR = "SFOPERATORS_OPERATOR_ID"
DEFAULT_HOME = "~/.config/sfoperators"

OPERATOR_TYPES = ("task", "backup", "restore", "deployment", "serviceflow")


class ConfigError(ConfigurationError):
    """Configuration validation error."""
    pass


def get_sfoperators_home() -> Path:
    """Directory holding config.yaml."""
    return Path(os.environ.get(HOME_ENV_VAR, DEFAULT_HOME)).expanduser()


@dataclass
class OperatorsConfig:
    """Settings of one operator process."""
    operator_id: str
    worker_limit: int = DEFAULT_WORKER_LIMIT
    watch_timeout: int = WATCH_TIMEOUT
    watch_error_delay: int = WATCHER_ERROR_DELAY
    poll_interval: int = POLL_INTERVAL
    conflict_retries: int = MAX_CONFLICT_RETRIES
    retry_delay: float = RETRY_DELAY
    lock_ttl: int = DEFAULT_LOCK_TTL
    timeouts: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_TIMEOUTS))
    operators: list[str] = field(default_factory=lambda: list(OPERATOR_TYPES))
    task_types: list[str] = field(default_factory=lambda: [t.value for t in TaskType])
    network_name: str = "default"
    networks: list[dict[str, Any]] = field(default_factory=list)
    segmentation: Segmentation = field(default_factory=Segmentation)
    service_flows: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    logging: dict[str, Any] = field(default_factory=dict)
    env_file: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OperatorsConfig":
        """
        Build a config from parsed YAML.

        Raises:
            ConfigError: If a value has the wrong type or range
        """
        known = {
            "worker_limit", "watch_timeout", "watch_error_delay", "poll_interval",
            "conflict_retries", "retry_delay", "lock_ttl", "network_name", "networks",
            "service_flows", "logging", "env_file", "operators", "task_types",
        }
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["operator_id"] = str(
            data.get("operator_id")
            or os.environ.get(OPERATOR_ID_ENV_VAR)
            or socket.gethostname()
        )
        kwargs["timeouts"] = {**DEFAULT_TIMEOUTS, **(data.get("timeouts") or {})}
        try:
            kwargs["segmentation"] = Segmentation.from_dict(data.get("segmentation"))
        except ConfigurationError as e:
            raise ConfigError(str(e)) from e
        try:
            config = cls(**kwargs)
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e
        config.validate()
        return config

    def validate(self) -> None:
        """Validate entire configuration."""
        for name in ("worker_limit", "watch_timeout", "poll_interval", "conflict_retries", "lock_ttl"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")
        if not isinstance(self.watch_error_delay, (int, float)) or self.watch_error_delay < 0:
            raise ConfigError(f"watch_error_delay must be >= 0, got {self.watch_error_delay!r}")
        unknown = sorted(set(self.operators) - set(OPERATOR_TYPES))
        if unknown:
            raise ConfigError(f"Unknown operator types: {unknown}. Known: {list(OPERATOR_TYPES)}")
        for operator_type, timeout in self.timeouts.items():
            if not isinstance(timeout, (int, float)) or timeout <= 0:
                raise ConfigError(f"Timeout for {operator_type} must be positive, got {timeout!r}")
        for flow, tasks in self.service_flows.items():
            if not tasks or any("task_type" not in task for task in tasks):
                raise ConfigError(f"Service flow {flow}: every task needs a task_type")
        if self.networks:
            self._validate_networks()

    def _validate_networks(self) -> None:
        if not isinstance(self.networks, list) or not all(isinstance(spec, dict) for spec in self.networks):
            raise ConfigError(f"networks must be a list of network specs, got {self.networks!r}")
        try:
            networks = Networks(self.networks, segmentation=self.segmentation)
        except ConfigurationError as e:
            raise ConfigError(f"Invalid networks: {e}") from e
        names = [network.name for network in networks]
        if self.network_name not in names:
            raise ConfigError(f"network_name {self.network_name!r} is not one of the configured networks {names}")

    def timeout_for(self, operator_type: str) -> float:
        return self.timeouts.get(operator_type, DEFAULT_TIMEOUTS["task"])

    def configured_task_types(self) -> list[str]:
        """Task types named in the config, including those used by service flows."""
        types = list(self.task_types)
        for tasks in self.service_flows.values():
            types.extend(task["task_type"] for task in tasks)
        return sorted(set(types))

    def get_log_level(self) -> str:
        return str(self.logging.get("level", "INFO")).upper()

    def get_log_format(self) -> str:
        return self.logging.get("format", "pretty")

    def get_log_file_path(self) -> Optional[Path]:
        log_file = self.logging.get("file")
        return Path(log_file).expanduser() if log_file else None

    def __repr__(self) -> str:
        return (
            f"OperatorsConfig(operator_id={self.operator_id}, operators={self.operators}, "
            f"worker_limit={self.worker_limit})"
        )


def load_config(config_path: Optional[Path] = None) -> OperatorsConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to $SFOPERATORS_HOME/config.yaml

    Returns:
        OperatorsConfig instance

    Raises:
        FileNotFoundError: If the config file is missing
        ConfigError: If config is invalid
    """
    if config_path is None:
        config_path = get_sfoperators_home() / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(f"sfoperators config.yaml not found at {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration must be a mapping, got {type(data).__name__}")

    env_file = data.get("env_file")
    if env_file:
        load_dotenv(Path(env_file).expanduser())

    return OperatorsConfig.from_dict(data)
