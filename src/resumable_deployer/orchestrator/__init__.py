"""Orchestrator module for resumable, ledger-backed deployments.

This module provides the core of the deployer:
- StepCatalog: Fixed, dependency-ordered registry of steps
- DeploymentLedger/LedgerStore: Durable record of applied steps
- SkipPolicy: Operator-supplied skip/allow lists
- Sequencer: Drives a run and persists progress after every step
- VerificationPass: Advisory post-deployment checks
- RunJournal: Per-run JSON logs
"""

from .models import (
    RunContext,
    RunReport,
    Step,
    StepOutcome,
    StepReport,
    StepResult,
    is_placeholder,
)
from .catalog import StepCatalog
from .ledger import DeploymentLedger, LedgerStore
from .skip_policy import SkipPolicy, parse_step_list
from .sequencer import Sequencer
from .verification import VerificationCheck, VerificationPass, VerificationReport
from .journal import RunJournal

__all__ = [
    "RunContext",
    "RunReport",
    "Step",
    "StepOutcome",
    "StepReport",
    "StepResult",
    "is_placeholder",
    "StepCatalog",
    "DeploymentLedger",
    "LedgerStore",
    "SkipPolicy",
    "parse_step_list",
    "Sequencer",
    "VerificationCheck",
    "VerificationPass",
    "VerificationReport",
    "RunJournal",
]
