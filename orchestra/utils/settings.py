from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field


class LLMConfig(BaseModel):
    provider: str = "openai"
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    max_tokens: int = 16384


class AgentConfig(BaseModel):
    prompt_path: Optional[str] = None
    description: str = ""
    capabilities: List[str] = Field(default_factory=list)
    limitations: List[str] = Field(default_factory=list)
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    timeout: float = 300.0
    max_iterations: int = 15


class WorkflowConfig(BaseModel):
    max_decomposition_depth: int = 3
    max_concurrency: int = 3
    step_timeout: float = 120.0
    checkpoint_interval: float = 30.0
    max_subtasks: int = 20
    execution_mode: str = "execute"


class RetryConfig(BaseModel):
    max_rate_limit_retries: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0
    strategy_max_attempts: int = 3


class HistoryConfig(BaseModel):
    max_history: int = 50


class CacheConfig(BaseModel):
    routing_ttl: float = 300.0
    routing_max_size: int = 100
    response_enabled: bool = False
    response_ttl: float = 600.0
    response_max_size: int = 200


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = 5
    success_threshold: int = 2
    reset_timeout: float = 30.0
    failure_window: float = 60.0


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[str] = None


class AppConfig(BaseModel):
    llm: LLMConfig
    agents: Dict[str, AgentConfig]
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(env: str = "base", config_dir: str | Path = "configs") -> AppConfig:
    config_dir = Path(config_dir)
    base = _read_yaml(config_dir / "base.yaml")
    if env != "base":
        override_path = config_dir / f"{env}.yaml"
        if override_path.exists():
            base = _merge_dicts(base, _read_yaml(override_path))
    return AppConfig(
        llm=LLMConfig(**base["llm"]),
        agents={k: AgentConfig(**(v or {})) for k, v in base.get("agents", {}).items()},
        workflow=WorkflowConfig(**base.get("workflow", {})),
        retry=RetryConfig(**base.get("retry", {})),
        history=HistoryConfig(**base.get("history", {})),
        cache=CacheConfig(**base.get("cache", {})),
        circuit_breaker=CircuitBreakerConfig(**base.get("circuit_breaker", {})),
        logging=LoggingConfig(**base.get("logging", {"level": "INFO"})),
    )


def _read_yaml(path: Path) -> Dict[str, Any]:
    return yaml.safe_load(path.read_text(encoding="utf-8")) or {}


def _merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge_dicts(base[key], value)
        else:
            merged[key] = value
    return merged
