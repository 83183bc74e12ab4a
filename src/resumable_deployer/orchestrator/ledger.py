"""Deployment ledger: the single source of cross-step truth.

The ledger maps resource keys to step results. It is mutated one entry at a
time by the sequencer and written in full by ``LedgerStore.persist`` after
every applied step, so a restarted process can re-derive progress from it.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Optional, Set, Union

from ..errors import (
    ConfigurationError,
    DependencyMissingError,
    LedgerConflictError,
    PersistenceError,
)
from .models import StepResult, is_placeholder

logger = logging.getLogger(__name__)

LEDGER_VERSION = 1


class DeploymentLedger:
    """资源键 → 步骤结果 的映射，外加操作员设置的跳过标记"""

    def __init__(
        self,
        entries: Optional[Dict[str, StepResult]] = None,
        skipped: Optional[Iterable[int]] = None,
        network: str = "",
    ) -> None:
        self._entries: Dict[str, StepResult] = dict(entries or {})
        self.skipped: Set[int] = set(skipped or ())
        self.network = network
        self._recorded_at: Dict[str, str] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> Iterable[str]:
        return self._entries.keys()

    def has(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[StepResult]:
        return self._entries.get(key)

    def is_applied(self, key: str) -> bool:
        """Idempotency check: present and not a placeholder identifier."""
        result = self._entries.get(key)
        return result is not None and not is_placeholder(result.identifier)

    def require(self, key: str) -> StepResult:
        """Return an applied dependency or raise DependencyMissingError."""
        if not self.is_applied(key):
            raise DependencyMissingError(key)
        return self._entries[key]

    def identifier(self, key: str) -> str:
        return self.require(key).identifier

    def set(self, key: str, result: StepResult) -> None:
        if result.resource_key != key:
            raise ConfigurationError(
                f"Result for '{result.resource_key}' cannot be stored under '{key}'"
            )
        existing = self._entries.get(key)
        if (
            existing is not None
            and not is_placeholder(existing.identifier)
            and existing.identifier != result.identifier
        ):
            raise LedgerConflictError(key, existing.identifier, result.identifier)
        self._entries[key] = result
        self._recorded_at[key] = datetime.now().isoformat()

    def restore(self, key: str, previous: Optional[StepResult]) -> None:
        """Put back the entry that existed before a failed write."""
        if previous is None:
            self._entries.pop(key, None)
            self._recorded_at.pop(key, None)
        else:
            self._entries[key] = previous

    def clear(self, key: str) -> Optional[StepResult]:
        """Operator action: forget an entry so its step is applied again."""
        self._recorded_at.pop(key, None)
        return self._entries.pop(key, None)

    def seed(self, key: str, identifier: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        """Pre-seed an externally known result.

        Returns False when the key already holds the same identifier.
        """
        current = self._entries.get(key)
        if current is not None and current.identifier == identifier:
            return False
        meta = {"source": "seed"}
        meta.update(metadata or {})
        self.set(key, StepResult(resource_key=key, identifier=identifier, metadata=meta))
        return True

    def to_dict(self) -> Dict[str, Any]:
        entries = {}
        for key, result in self._entries.items():
            payload = result.to_dict()
            recorded_at = self._recorded_at.get(key)
            if recorded_at:
                payload["recorded_at"] = recorded_at
            entries[key] = payload
        return {
            "version": LEDGER_VERSION,
            "network": self.network,
            "skip_steps": sorted(self.skipped),
            "entries": entries,
            "updated_at": datetime.now().isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "DeploymentLedger":
        if not isinstance(payload, dict):
            raise ConfigurationError("Ledger payload must be a JSON object")
        version = payload.get("version", LEDGER_VERSION)
        if version != LEDGER_VERSION:
            raise ConfigurationError(f"Unsupported ledger version: {version}")

        raw_entries = payload.get("entries", {}) or {}
        if not isinstance(raw_entries, dict):
            raise ConfigurationError("Ledger 'entries' must be an object")
        raw_skips = payload.get("skip_steps", []) or []
        if not isinstance(raw_skips, list):
            raise ConfigurationError("Ledger 'skip_steps' must be a list")

        ledger = cls(network=payload.get("network", "") or "")
        try:
            ledger.skipped = {int(index) for index in raw_skips}
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid skip marker in ledger: {exc}") from exc

        for key, data in raw_entries.items():
            if not isinstance(data, dict):
                raise ConfigurationError(f"Ledger entry '{key}' must be an object")
            ledger._entries[key] = StepResult.from_dict(key, data)
            if data.get("recorded_at"):
                ledger._recorded_at[key] = data["recorded_at"]
        return ledger


class LedgerStore:
    """Reads and atomically rewrites the ledger file."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self, require_existing: bool = False) -> DeploymentLedger:
        """Load the durable ledger.

        Args:
            require_existing: 恢复运行时为 True，文件缺失视为配置错误

        Returns:
            The stored ledger, or an empty one on a genuine first run.
        """
        if not self.path.exists():
            if require_existing:
                raise ConfigurationError(
                    f"Ledger not found at {self.path}; cannot resume without it"
                )
            logger.info("No ledger at %s, starting a fresh deployment", self.path)
            return DeploymentLedger()

        try:
            text = self.path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationError(f"Cannot read ledger {self.path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Ledger {self.path} is corrupt: {exc}") from exc

        ledger = DeploymentLedger.from_dict(payload)
        logger.info("Loaded ledger %s (%d entries)", self.path, len(ledger))
        return ledger

    def persist(self, ledger: DeploymentLedger) -> None:
        """Write the full ledger atomically (write to .tmp, fsync, os.replace)."""
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            data = json.dumps(ledger.to_dict(), indent=2, ensure_ascii=False)
            with open(tmp_path, "w", encoding="utf-8") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as exc:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    logger.debug("Could not remove %s", tmp_path)
            raise PersistenceError(f"Failed to persist ledger to {self.path}: {exc}") from exc
        logger.debug("Ledger persisted to %s", self.path)
