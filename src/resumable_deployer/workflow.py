"""High-level workflow orchestration."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .config import AppConfig
from .errors import ConfigurationError, DeploymentError, RemoteCallError
from .invoker import ActionInvoker, HttpActionInvoker
from .orchestrator import (
    DeploymentLedger,
    LedgerStore,
    RunContext,
    RunJournal,
    RunReport,
    Sequencer,
    SkipPolicy,
    Step,
    StepOutcome,
    StepReport,
    VerificationReport,
)
from .pipeline import Pipeline, load_pipeline
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DeploymentRequest:
    """Operator overrides captured from the CLI for a single run."""

    skip_steps: Iterable[int] = ()
    only_steps: Optional[Iterable[int]] = None
    resume: bool = False                 # 要求账本已存在
    verify: Optional[bool] = None        # None 表示使用配置


@dataclass
class WorkflowResult:
    report: RunReport
    verification: Optional[VerificationReport] = None
    journal_path: Optional[Path] = None

    @property
    def succeeded(self) -> bool:
        return self.report.succeeded


class DeploymentWorkflow:
    """Wires configuration, ledger, skip policy and sequencer for one deployment."""

    def __init__(
        self,
        config: AppConfig,
        pipeline: Optional[Pipeline] = None,
        invoker: Optional[ActionInvoker] = None,
        store: Optional[LedgerStore] = None,
    ) -> None:
        self.config = config
        self._pipeline = pipeline
        self._invoker = invoker
        self.store = store or LedgerStore(config.deployment.ledger_path)

    @property
    def pipeline(self) -> Pipeline:
        if self._pipeline is None:
            path = self.config.deployment.pipeline_path
            if not path:
                raise ConfigurationError("No pipeline definition configured (deployment.pipeline_path)")
            self._pipeline = load_pipeline(path)
        return self._pipeline

    @property
    def invoker(self) -> ActionInvoker:
        if self._invoker is None:
            try:
                self._invoker = HttpActionInvoker(self.config.invoker)
            except ValueError as exc:
                raise ConfigurationError(str(exc)) from exc
        return self._invoker

    def run_deploy(self, request: Optional[DeploymentRequest] = None) -> WorkflowResult:
        """Run (or resume) the deployment pipeline."""
        request = request or DeploymentRequest()
        deployment = self.config.deployment
        pipeline = self.pipeline

        logger.info("Preparing deployment '%s' on %s", pipeline.name, deployment.network or "default network")

        # Step 1: 加载账本
        ledger = self.store.load(
            require_existing=request.resume or deployment.require_existing_ledger
        )
        self._check_network(ledger)
        if self.seed_entries(ledger, deployment.seed):
            self.store.persist(ledger)

        # Step 2: 跳过策略（配置 + 账本标记 + 命令行）
        only = request.only_steps if request.only_steps is not None else deployment.only_steps
        policy = SkipPolicy(skip=deployment.skip_steps, only=only).merge(
            ledger.skipped, request.skip_steps
        )
        policy.validate(pipeline.catalog)

        context = RunContext(
            operator=deployment.operator,
            network=deployment.network,
            parameters={**pipeline.parameters, **deployment.parameters},
            invoker_factory=lambda: self.invoker,
        )

        journal = RunJournal(deployment.log_dir)
        journal_path = journal.start(
            pipeline.catalog,
            network=deployment.network,
            operator=deployment.operator,
            ledger_path=str(self.store.path),
        )

        # Step 3: 预检资源余额
        try:
            self._preflight(context)
        except RemoteCallError as exc:
            logger.error("❌ Preflight failed: %s", exc)
            report = RunReport(status="failed", error=exc)
            journal.finalize(report)
            return WorkflowResult(report=report, journal_path=journal_path)

        # Step 4: 执行步骤
        recorded: List[StepReport] = []

        def on_step(step: Step, entry: StepReport) -> None:
            recorded.append(entry)
            journal.record_step(step, entry)

        sequencer = Sequencer(self.store, context, on_step=on_step)
        try:
            report = sequencer.run(pipeline.catalog, ledger, policy)
        except Exception as exc:
            # 保留已记录的步骤，摘要计数与 steps 数组一致
            failed = RunReport(
                steps=recorded,
                status="failed",
                error=DeploymentError(f"Unexpected error: {exc}"),
            )
            journal.finalize(failed)
            raise

        # Step 5: 验证（不影响运行结果）
        verification = None
        verify = request.verify if request.verify is not None else self.config.verification.enabled
        if report.succeeded and verify and pipeline.verification.checks:
            verification = pipeline.verification.run(ledger, context)
            journal.record_verification(verification)

        journal.finalize(report)
        self._log_summary(pipeline, ledger, report)
        return WorkflowResult(report=report, verification=verification, journal_path=journal_path)

    def load_ledger(self) -> DeploymentLedger:
        return self.store.load(require_existing=True)

    def clear_entry(self, resource_key: str) -> bool:
        """Operator action: drop an entry so its step is applied again."""
        ledger = self.load_ledger()
        removed = ledger.clear(resource_key)
        if removed is None:
            return False
        self.store.persist(ledger)
        logger.info("Cleared '%s' (was %s)", resource_key, removed.identifier)
        return True

    def seed_entry(self, resource_key: str, identifier: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        ledger = self.store.load()
        changed = ledger.seed(resource_key, identifier, metadata)
        if changed:
            self.store.persist(ledger)
            logger.info("Seeded '%s' = %s", resource_key, identifier)
        return changed

    def set_skip_markers(self, indices: Iterable[int], enabled: bool = True) -> List[int]:
        """Persist operator skip markers inside the ledger file."""
        ledger = self.store.load()
        if enabled:
            ledger.skipped.update(indices)
        else:
            ledger.skipped.difference_update(indices)
        self.store.persist(ledger)
        return sorted(ledger.skipped)

    @staticmethod
    def seed_entries(ledger: DeploymentLedger, seed: Dict[str, Any]) -> bool:
        changed = False
        for key, value in (seed or {}).items():
            if isinstance(value, dict):
                identifier = value.get("identifier", "")
                metadata = value.get("metadata")
            else:
                identifier, metadata = value, None
            if not identifier:
                raise ConfigurationError(f"Seed entry '{key}' has no identifier")
            if ledger.seed(key, str(identifier), metadata):
                logger.info("🌱 Seeded '%s' = %s", key, identifier)
                changed = True
        return changed

    def _check_network(self, ledger: DeploymentLedger) -> None:
        network = self.config.deployment.network
        if ledger.network and network and ledger.network != network:
            raise ConfigurationError(
                f"Ledger {self.store.path} belongs to network '{ledger.network}', "
                f"not '{network}'"
            )
        if not ledger.network:
            ledger.network = network

    def _preflight(self, context: RunContext) -> None:
        minimum = self.config.deployment.min_balance
        if minimum <= 0:
            return
        balance = context.require_invoker().balance(context.operator)
        if balance is None:
            logger.warning("Backend does not report balances; skipping preflight check")
            return
        logger.info("Operator balance: %s (minimum %s)", balance, minimum)
        if balance < minimum:
            raise RemoteCallError(
                f"Insufficient resources: balance {balance} is below the required {minimum}",
                retryable=False,
            )

    def _log_summary(self, pipeline: Pipeline, ledger: DeploymentLedger, report: RunReport) -> None:
        logger.info("")
        logger.info("=" * 60)
        logger.info("📦 DEPLOYED RESOURCES")
        logger.info("=" * 60)
        for step in pipeline.catalog:
            result = ledger.get(step.resource_key)
            identifier = result.identifier if result and result.applied else "-"
            logger.info(f"  {step.index:>2}. {step.resource_key:<40} {identifier}")
        logger.info("=" * 60)

        if not report.succeeded:
            failed = report.failed_step
            if failed is not None:
                logger.info("Fix the cause of step %d (%s) and run again to resume.", failed.index, failed.step_name)
        elif report.count(StepOutcome.SKIPPED):
            logger.info("Some steps were skipped; remove them from the skip list and run again to apply them.")
        logger.info(f"Ledger saved at {self.store.path}; run again to continue from where it left off.")
