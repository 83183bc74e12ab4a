"""Unified path constants for Resumable-Deployer.

All state is stored relative to the current working directory:
- .resumable-deployer/ledger.json   # Durable deployment ledger
- deploy_logs/                      # Per-run JSON journals
"""

from pathlib import Path

# 基础目录（在当前工作目录下）
BASE_DIR = Path(".resumable-deployer")

DEFAULT_LEDGER_PATH = BASE_DIR / "ledger.json"   # 部署账本
LOGS_DIR = Path("deploy_logs")                   # 运行日志
