"""Post-deployment smoke checks.

The verification pass is advisory: a failing check is logged and counted but
never touches the ledger and never changes the run outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from .ledger import DeploymentLedger
from .models import RunContext

logger = logging.getLogger(__name__)

# 返回 False 或抛出异常表示检查失败；返回字符串作为说明
CheckFunction = Callable[[DeploymentLedger, RunContext], Any]


@dataclass
class VerificationCheck:
    name: str
    check: CheckFunction
    description: str = ""


@dataclass
class CheckResult:
    name: str
    passed: bool
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "passed": self.passed, "detail": self.detail}


@dataclass
class VerificationReport:
    results: List[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.passed)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


class VerificationPass:
    """Runs each check, logs the outcome and continues with the next one."""

    def __init__(self, checks: Optional[Iterable[VerificationCheck]] = None) -> None:
        self.checks: List[VerificationCheck] = list(checks or [])

    def add(self, name: str, check: CheckFunction, description: str = "") -> None:
        self.checks.append(VerificationCheck(name=name, check=check, description=description))

    def run(self, ledger: DeploymentLedger, context: RunContext) -> VerificationReport:
        report = VerificationReport()
        if not self.checks:
            return report

        logger.info("")
        logger.info("=" * 60)
        logger.info("🔍 VERIFICATION")
        logger.info("=" * 60)

        for number, item in enumerate(self.checks, 1):
            logger.info(f"📋 Check {number}: {item.name}")
            try:
                outcome = item.check(ledger, context)
            except Exception as exc:
                logger.warning(f"   ❌ {item.name}: {exc}")
                report.results.append(CheckResult(item.name, False, str(exc)))
                continue

            if outcome is False:
                logger.warning(f"   ❌ {item.name}: check returned False")
                report.results.append(CheckResult(item.name, False, "check returned False"))
            else:
                detail = outcome if isinstance(outcome, str) else ""
                logger.info(f"   ✅ {item.name}" + (f": {detail}" if detail else ""))
                report.results.append(CheckResult(item.name, True, detail))

        logger.info("=" * 60)
        logger.info(f"Checks passed: {report.passed}, failed: {report.failed}")
        logger.info("=" * 60)
        return report
