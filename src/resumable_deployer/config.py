"""Configuration loading utilities for Resumable-Deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError
from .orchestrator.skip_policy import parse_step_list
from .paths import DEFAULT_LEDGER_PATH, LOGS_DIR

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("config/default_config.json")

ENV_PREFIX = "RESUMABLE_DEPLOYER_"


@dataclass
class InvokerConfig:
    """Configuration for the remote action invoker."""

    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    proxy: Optional[str] = None            # 代理设置，如 "http://127.0.0.1:7890"
    timeout: int = 30                      # 单次 HTTP 请求超时（秒）
    poll_interval: float = 2.0             # 轮询确认间隔（秒）
    confirmation_timeout: int = 300        # 等待确认的总超时（秒）
    max_retries: int = 3                   # 限流时的最大重试次数
    retry_backoff: float = 5.0


@dataclass
class DeploymentConfig:
    """Settings related to the deployment run."""

    ledger_path: str = str(DEFAULT_LEDGER_PATH)
    pipeline_path: Optional[str] = None
    network: str = ""
    operator: str = ""
    skip_steps: List[int] = field(default_factory=list)
    only_steps: Optional[List[int]] = None
    require_existing_ledger: bool = False  # 恢复模式：账本缺失视为错误
    min_balance: float = 0.0               # 预检最低余额，0 表示不检查
    # 预置条目：resource_key -> identifier 或 {"identifier": ..., "metadata": {...}}
    seed: Dict[str, Any] = field(default_factory=dict)
    parameters: Dict[str, Any] = field(default_factory=dict)
    log_dir: str = str(LOGS_DIR)


@dataclass
class VerificationConfig:
    """Configuration for the post-deployment verification pass."""

    enabled: bool = True


@dataclass
class AppConfig:
    """Top-level configuration."""

    invoker: InvokerConfig = field(default_factory=InvokerConfig)
    deployment: DeploymentConfig = field(default_factory=DeploymentConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        # 过滤掉以下划线开头的注释字段
        def section(name: str) -> Dict[str, Any]:
            data = payload.get(name, {}) or {}
            if not isinstance(data, dict):
                raise ConfigurationError(f"Config section '{name}' must be an object")
            return {k: v for k, v in data.items() if not k.startswith("_")}

        deployment = section("deployment")
        if "skip_steps" in deployment:
            deployment["skip_steps"] = _step_list("skip_steps", deployment["skip_steps"]) or []
        if "only_steps" in deployment:
            deployment["only_steps"] = _step_list("only_steps", deployment["only_steps"])

        try:
            return cls(
                invoker=InvokerConfig(**{**InvokerConfig().__dict__, **section("invoker")}),
                deployment=DeploymentConfig(**{**DeploymentConfig().__dict__, **deployment}),
                verification=VerificationConfig(
                    **{**VerificationConfig().__dict__, **section("verification")}
                ),
            )
        except TypeError as exc:
            raise ConfigurationError(f"Unknown configuration field: {exc}") from exc


def _step_list(name: str, value: Any) -> Optional[List[int]]:
    """Accept ``[1, 3]`` or the ``"1,3,5-7"`` form used by the CLI and env vars."""
    if value is None:
        return None
    if isinstance(value, str):
        return sorted(parse_step_list(value))
    # bool 是 int 的子类，需要单独排除
    if isinstance(value, list) and all(
        isinstance(item, int) and not isinstance(item, bool) for item in value
    ):
        return sorted(set(value))
    raise ConfigurationError(
        f"Config field '{name}' must be a list of step indices or a string like '1,3,5-7', "
        f"got {value!r}"
    )


def apply_env_overrides(config: AppConfig) -> AppConfig:
    """Apply environment variables (higher priority than the config file)."""
    env_endpoint = os.getenv(f"{ENV_PREFIX}INVOKER_ENDPOINT")
    if env_endpoint:
        config.invoker.endpoint = env_endpoint

    if not config.invoker.api_key:
        config.invoker.api_key = os.getenv(f"{ENV_PREFIX}API_KEY")

    env_proxy = os.getenv(f"{ENV_PREFIX}PROXY")
    if env_proxy:
        config.invoker.proxy = env_proxy

    env_ledger = os.getenv(f"{ENV_PREFIX}LEDGER_PATH")
    if env_ledger:
        config.deployment.ledger_path = env_ledger

    env_network = os.getenv(f"{ENV_PREFIX}NETWORK")
    if env_network:
        config.deployment.network = env_network

    env_operator = os.getenv(f"{ENV_PREFIX}OPERATOR")
    if env_operator:
        config.deployment.operator = env_operator

    env_skips = os.getenv(f"{ENV_PREFIX}SKIP_STEPS")
    if env_skips:
        config.deployment.skip_steps = sorted(parse_step_list(env_skips))

    return config


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    Environment variables (higher priority than config file):
    - RESUMABLE_DEPLOYER_INVOKER_ENDPOINT: Backend operations API base URL
    - RESUMABLE_DEPLOYER_API_KEY: Bearer token for the backend
    - RESUMABLE_DEPLOYER_PROXY: HTTP proxy for backend requests
    - RESUMABLE_DEPLOYER_LEDGER_PATH: Ledger file location
    - RESUMABLE_DEPLOYER_NETWORK: Target network name
    - RESUMABLE_DEPLOYER_OPERATOR: Operator (caller) identity
    - RESUMABLE_DEPLOYER_SKIP_STEPS: Comma separated step indices to skip
    """

    # 显式指定的配置文件不存在时不回退到默认配置
    candidate_paths = [Path(path)] if path else [_DEFAULT_CONFIG_PATH]

    for candidate in candidate_paths:
        if candidate.is_file():
            try:
                with candidate.open("r", encoding="utf-8") as handle:
                    data = json.load(handle)
            except json.JSONDecodeError as exc:
                raise ConfigurationError(f"Config file {candidate} is not valid JSON: {exc}") from exc
            if not isinstance(data, dict):
                raise ConfigurationError(f"Config file {candidate} must contain a JSON object")
            return apply_env_overrides(AppConfig.from_dict(data))

    raise FileNotFoundError(
        f"Could not find configuration file. Looked in: {', '.join(str(p) for p in candidate_paths)}"
    )
