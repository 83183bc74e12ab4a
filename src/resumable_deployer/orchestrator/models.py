"""Data models for the orchestrator module."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..errors import DeploymentError
    from ..invoker import ActionInvoker
    from .ledger import DeploymentLedger

# 占位标识符：空串，或仅由 0 组成（可带 0x 前缀），例如零地址
_PLACEHOLDER_PATTERN = re.compile(r"^(0[xX])?0*$")


def is_placeholder(identifier: Optional[str]) -> bool:
    """Return True when ``identifier`` means "not yet applied".

    One rule for every resource kind: ``None``, the empty string, and strings
    made only of zeros (optionally ``0x``-prefixed) are placeholders.
    """
    if identifier is None:
        return True
    return bool(_PLACEHOLDER_PATTERN.match(str(identifier).strip()))


class StepOutcome(Enum):
    """步骤执行结果"""
    APPLIED = "applied"
    REUSED = "reused"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StepResult:
    """The durable result of one step, recorded under its resource key."""

    resource_key: str
    identifier: str
    metadata: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.identifier = "" if self.identifier is None else str(self.identifier)
        self.metadata = {str(k): str(v) for k, v in (self.metadata or {}).items()}

    @property
    def applied(self) -> bool:
        return not is_placeholder(self.identifier)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, resource_key: str, data: Dict[str, Any]) -> "StepResult":
        return cls(
            resource_key=resource_key,
            identifier=data.get("identifier", ""),
            metadata=data.get("metadata", {}) or {},
        )


@dataclass
class RunContext:
    """Ephemeral per-run data. Never persisted."""

    operator: str = ""
    network: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)
    invoker: Optional["ActionInvoker"] = None
    # 首次需要远程调用时才构建 invoker，只复用步骤的运行不需要后端
    invoker_factory: Optional[Callable[[], "ActionInvoker"]] = field(default=None, repr=False)

    def require_invoker(self) -> "ActionInvoker":
        if self.invoker is None and self.invoker_factory is not None:
            self.invoker = self.invoker_factory()
        if self.invoker is None:
            from ..errors import ConfigurationError
            raise ConfigurationError("No action invoker configured for this run")
        return self.invoker


StepAction = Callable[["DeploymentLedger", RunContext], StepResult]


@dataclass(frozen=True)
class Step:
    """单个部署步骤（目录构建后不可变）"""
    name: str
    resource_key: str
    action: StepAction = field(compare=False, repr=False)
    depends_on: FrozenSet[str] = field(default_factory=frozenset)
    description: str = ""
    index: int = 0                               # 由 StepCatalog 分配，从 1 开始

    def __post_init__(self) -> None:
        object.__setattr__(self, "depends_on", frozenset(self.depends_on))

    def apply(self, ledger: "DeploymentLedger", context: RunContext) -> StepResult:
        return self.action(ledger, context)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "name": self.name,
            "resource_key": self.resource_key,
            "depends_on": sorted(self.depends_on),
            "description": self.description,
        }


@dataclass
class StepReport:
    """One line of the run report."""

    index: int
    step_name: str
    resource_key: str
    outcome: StepOutcome
    identifier: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    finished_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "step_name": self.step_name,
            "resource_key": self.resource_key,
            "outcome": self.outcome.value,
            "identifier": self.identifier,
            "error": self.error,
            "error_kind": self.error_kind,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


@dataclass
class RunReport:
    """Ordered outcomes of one sequencer run."""

    steps: List[StepReport] = field(default_factory=list)
    status: str = "running"             # "running" | "success" | "failed"
    error: Optional["DeploymentError"] = None
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    finished_at: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def failed_step(self) -> Optional[StepReport]:
        for report in self.steps:
            if report.outcome is StepOutcome.FAILED:
                return report
        return None

    def outcomes(self) -> List[StepOutcome]:
        return [report.outcome for report in self.steps]

    def count(self, outcome: StepOutcome) -> int:
        return sum(1 for report in self.steps if report.outcome is outcome)

    def get(self, step_name: str) -> Optional[StepReport]:
        for report in self.steps:
            if report.step_name == step_name:
                return report
        return None

    def raise_for_failure(self) -> None:
        """Re-raise the error that aborted the run, if any."""
        if self.error is not None:
            raise self.error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "error": str(self.error) if self.error else None,
            "steps": [report.to_dict() for report in self.steps],
            "counts": {outcome.value: self.count(outcome) for outcome in StepOutcome},
        }
