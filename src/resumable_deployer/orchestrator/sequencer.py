"""Resumable step sequencer: drives a catalog against the ledger."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from ..errors import (
    DependencyMissingError,
    DeploymentError,
    PersistenceError,
    StepContractError,
)
from .catalog import StepCatalog
from .ledger import DeploymentLedger, LedgerStore
from .models import (
    RunContext,
    RunReport,
    Step,
    StepOutcome,
    StepReport,
    StepResult,
)
from .skip_policy import SkipPolicy

logger = logging.getLogger(__name__)

StepCallback = Callable[[Step, StepReport], None]


class Sequencer:
    """
    步骤编排器

    严格按目录顺序执行：跳过 → 幂等检查 → 执行 → 写入账本并持久化。
    任何失败都会中止整个运行；恢复依靠重新运行并从账本推导进度。
    """

    def __init__(
        self,
        store: LedgerStore,
        context: Optional[RunContext] = None,
        on_step: Optional[StepCallback] = None,
    ) -> None:
        self.store = store
        self.context = context or RunContext()
        self.on_step = on_step

    def run(
        self,
        catalog: StepCatalog,
        ledger: DeploymentLedger,
        policy: Optional[SkipPolicy] = None,
    ) -> RunReport:
        """
        执行步骤目录

        Args:
            catalog: 已排序的步骤目录
            ledger: 已加载的账本
            policy: 操作员跳过策略

        Returns:
            RunReport: 有序的步骤结果；失败时 ``error`` 带有失败步骤的标记
        """
        policy = policy or SkipPolicy()
        report = RunReport()

        logger.info("")
        logger.info("=" * 60)
        logger.info("🚀 DEPLOYMENT SEQUENCE")
        logger.info("=" * 60)
        logger.info(f"Total Steps: {len(catalog)}")
        logger.info(f"Ledger: {self.store.path} ({len(ledger)} entries)")
        logger.info("=" * 60)

        for step in catalog:
            started_at = datetime.now().isoformat()
            logger.info(f"📍 Step {step.index}/{len(catalog)}: {step.name}")

            if policy.skip(step.index):
                logger.info("   ⏭️ Skipped by operator policy")
                self._record(report, step, StepOutcome.SKIPPED, started_at)
                continue

            if ledger.is_applied(step.resource_key):
                identifier = ledger.get(step.resource_key).identifier
                logger.info(f"   ♻️ Already applied: {identifier}")
                self._record(report, step, StepOutcome.REUSED, started_at, identifier=identifier)
                continue

            try:
                result = self._apply(step, ledger)
                self._write_through(step, ledger, result)
            except DeploymentError as exc:
                exc.tag(step)
                self._abort(report, step, ledger, exc, started_at)
                return report
            except Exception as exc:
                wrapped = DeploymentError(f"Unexpected error: {exc}").tag(step)
                wrapped.__cause__ = exc
                self._abort(report, step, ledger, wrapped, started_at)
                raise

            logger.info(f"   ✅ Applied: {result.identifier}")
            self._record(
                report, step, StepOutcome.APPLIED, started_at, identifier=result.identifier
            )

        report.status = "success"
        report.finished_at = datetime.now().isoformat()
        logger.info("=" * 60)
        logger.info(
            "🎉 Sequence completed: %d applied, %d reused, %d skipped",
            report.count(StepOutcome.APPLIED),
            report.count(StepOutcome.REUSED),
            report.count(StepOutcome.SKIPPED),
        )
        logger.info("=" * 60)
        return report

    def _apply(self, step: Step, ledger: DeploymentLedger) -> StepResult:
        # 依赖必须已写入账本，绝不使用占位值代替
        for key in sorted(step.depends_on):
            if not ledger.is_applied(key):
                raise DependencyMissingError(
                    key,
                    f"Step '{step.name}' needs '{key}', which is not applied in the ledger "
                    f"(skipped or never deployed)",
                )

        result = step.apply(ledger, self.context)

        if not isinstance(result, StepResult):
            raise StepContractError(f"Step returned {type(result).__name__}, expected StepResult")
        if result.resource_key != step.resource_key:
            raise StepContractError(
                f"Step returned a result for '{result.resource_key}', "
                f"expected '{step.resource_key}'"
            )
        if not result.applied:
            raise StepContractError(
                f"Step returned placeholder identifier {result.identifier!r}"
            )
        return result

    def _write_through(self, step: Step, ledger: DeploymentLedger, result: StepResult) -> None:
        previous = ledger.get(step.resource_key)
        ledger.set(step.resource_key, result)
        try:
            self.store.persist(ledger)
        except PersistenceError:
            # 未持久化的结果不能算作 APPLIED，回滚内存中的条目
            ledger.restore(step.resource_key, previous)
            raise

    def _abort(
        self,
        report: RunReport,
        step: Step,
        ledger: DeploymentLedger,
        error: DeploymentError,
        started_at: str,
    ) -> None:
        logger.error(f"   ❌ {error.kind}: {error}")
        self._record(
            report,
            step,
            StepOutcome.FAILED,
            started_at,
            error=error.message,
            error_kind=error.kind,
        )
        report.status = "failed"
        report.error = error
        report.finished_at = datetime.now().isoformat()

        if not isinstance(error, PersistenceError):
            try:
                self.store.persist(ledger)
            except PersistenceError as exc:
                logger.error("   Ledger could not be saved after failure: %s", exc)

        logger.error("=" * 60)
        logger.error("Deployment aborted at step %d (%s)", step.index, step.name)
        logger.error("Re-run to resume; completed steps are recorded in %s", self.store.path)
        logger.error("=" * 60)

    def _record(
        self,
        report: RunReport,
        step: Step,
        outcome: StepOutcome,
        started_at: str,
        identifier: Optional[str] = None,
        error: Optional[str] = None,
        error_kind: Optional[str] = None,
    ) -> None:
        entry = StepReport(
            index=step.index,
            step_name=step.name,
            resource_key=step.resource_key,
            outcome=outcome,
            identifier=identifier,
            error=error,
            error_kind=error_kind,
            started_at=started_at,
            finished_at=datetime.now().isoformat(),
        )
        report.steps.append(entry)
        if self.on_step:
            self.on_step(step, entry)
