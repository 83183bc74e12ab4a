"""Run journal: one JSON log file per deployment run.

The journal is diagnostic only. Progress is always re-derived from the
ledger, never from these files.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .catalog import StepCatalog
from .models import RunReport, Step, StepOutcome, StepReport
from .verification import VerificationReport

logger = logging.getLogger(__name__)


class RunJournal:
    """运行日志，每个步骤结束后重写文件"""

    def __init__(self, log_dir: Union[str, Path]) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.current_log_file: Optional[Path] = None
        self.deployment_log: Dict[str, Any] = {}

    def start(
        self,
        catalog: StepCatalog,
        network: str,
        operator: str,
        ledger_path: str,
    ) -> Path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        filename = f"deploy_{network or 'default'}_{timestamp}.json"
        self.current_log_file = self.log_dir / filename

        self.deployment_log = {
            "version": "1.0",
            "network": network,
            "operator": operator,
            "ledger_path": ledger_path,
            "start_time": datetime.now().isoformat(),
            "end_time": None,
            "status": "running",
            "plan": catalog.to_dict(),
            "steps": [],
            "verification": None,
            "error": None,
        }
        self._save()
        logger.info(f"📝 Logging to: {self.current_log_file}")
        return self.current_log_file

    def record_step(self, step: Step, entry: StepReport) -> None:
        self.deployment_log.setdefault("steps", []).append(entry.to_dict())
        self._save()

    def record_verification(self, report: VerificationReport) -> None:
        self.deployment_log["verification"] = report.to_dict()
        self._save()

    def finalize(self, report: RunReport) -> None:
        self.deployment_log["end_time"] = datetime.now().isoformat()
        self.deployment_log["status"] = report.status
        self.deployment_log["error"] = str(report.error) if report.error else None
        self.deployment_log["summary"] = {
            "total_steps": len(report.steps),
            "applied": report.count(StepOutcome.APPLIED),
            "reused": report.count(StepOutcome.REUSED),
            "skipped": report.count(StepOutcome.SKIPPED),
            "failed": report.count(StepOutcome.FAILED),
            "duration_seconds": self._calculate_duration(),
        }
        self._save()
        logger.info(f"📄 Log saved to: {self.current_log_file}")

    def _calculate_duration(self) -> float:
        try:
            start = datetime.fromisoformat(self.deployment_log["start_time"])
            end = datetime.fromisoformat(self.deployment_log["end_time"])
        except (KeyError, TypeError, ValueError):
            return 0.0
        return (end - start).total_seconds()

    def _save(self) -> None:
        if self.current_log_file:
            with open(self.current_log_file, "w", encoding="utf-8") as f:
                json.dump(self.deployment_log, f, indent=2, ensure_ascii=False)
