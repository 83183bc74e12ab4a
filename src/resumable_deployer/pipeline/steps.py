"""Step actions built from declarative operation lists."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

from ..errors import ConfigurationError, RemoteCallError
from ..invoker import Confirmation, Operation
from ..orchestrator.ledger import DeploymentLedger
from ..orchestrator.models import RunContext, StepResult

logger = logging.getLogger(__name__)

# ${ledger:<resource_key>}、${ledger:<resource_key>#<metadata_field>}、${context:<param>}、
# ${op:<n>}（同一步骤内第 n 个子操作的确认结果）
_REFERENCE = re.compile(r"\$\{(ledger|context|op):([^}#]+)(?:#([^}]+))?\}")


def find_ledger_references(value: Any) -> Set[str]:
    """Collect every resource key referenced with ``${ledger:...}`` in ``value``."""
    found: Set[str] = set()
    if isinstance(value, str):
        for source, name, _ in _REFERENCE.findall(value):
            if source == "ledger":
                found.add(name.strip())
    elif isinstance(value, dict):
        for item in value.values():
            found |= find_ledger_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            found |= find_ledger_references(item)
    return found


def resolve_references(
    value: Any,
    ledger: DeploymentLedger,
    context: RunContext,
    confirmations: Optional[Sequence[Confirmation]] = None,
) -> Any:
    """Substitute references with values read from the ledger or run context.

    ``confirmations`` holds the sub-operations already confirmed within the
    current step; ``${op:<n>}`` can only see those.
    """
    if isinstance(value, str):
        return _REFERENCE.sub(lambda m: _lookup(m, ledger, context, confirmations or ()), value)
    if isinstance(value, dict):
        return {k: resolve_references(v, ledger, context, confirmations) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_references(v, ledger, context, confirmations) for v in value]
    return value


def _lookup(
    match: "re.Match[str]",
    ledger: DeploymentLedger,
    context: RunContext,
    confirmations: Sequence[Confirmation],
) -> str:
    source, name, meta_field = match.group(1), match.group(2).strip(), match.group(3)
    if source == "op":
        try:
            confirmation = confirmations[int(name)]
        except (ValueError, IndexError):
            raise ConfigurationError(
                f"'{match.group(0)}' refers to a sub-operation that has not run yet"
            ) from None
        if meta_field is None:
            return confirmation.identifier
        return confirmation.metadata.get(meta_field, "")

    if source == "ledger":
        # 只能从账本读取依赖结果，缺失时抛出 DependencyMissingError
        result = ledger.require(name)
        if meta_field is None:
            return result.identifier
        if meta_field not in result.metadata:
            raise ConfigurationError(f"Ledger entry '{name}' has no metadata field '{meta_field}'")
        return result.metadata[meta_field]

    if name == "operator":
        return context.operator
    if name == "network":
        return context.network
    if name not in context.parameters:
        raise ConfigurationError(f"Run context has no parameter '{name}'")
    return str(context.parameters[name])


@dataclass
class OperationSpec:
    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)
    description: str = ""


class OperationStepAction:
    """
    Runs a step's sub-operations in order through the context's invoker.

    All sub-operations must be confirmed before a result is returned; the first
    failure propagates and nothing is recorded for the step.
    """

    def __init__(
        self,
        resource_key: str,
        operations: List[OperationSpec],
        identifier_from: int = 0,
    ) -> None:
        if not operations:
            raise ConfigurationError(f"Step for '{resource_key}' declares no operations")
        if not 0 <= identifier_from < len(operations):
            raise ConfigurationError(
                f"identifier_from={identifier_from} is out of range for '{resource_key}'"
            )
        self.resource_key = resource_key
        self.operations = operations
        self.identifier_from = identifier_from

    def __call__(self, ledger: DeploymentLedger, context: RunContext) -> StepResult:
        invoker = context.require_invoker()
        confirmations: List[Confirmation] = []

        for number, spec in enumerate(self.operations, 1):
            operation = Operation(
                kind=spec.kind,
                payload=resolve_references(spec.payload, ledger, context, confirmations),
                description=spec.description,
            )
            logger.info(
                "   ▶ [%d/%d] %s", number, len(self.operations), spec.description or spec.kind
            )
            confirmations.append(invoker.execute(operation))

        source = confirmations[self.identifier_from]
        if not source.identifier:
            raise RemoteCallError(
                f"Operation '{self.operations[self.identifier_from].kind}' was confirmed "
                f"without an identifier",
                reference=source.reference,
                retryable=False,
            )

        metadata: Dict[str, str] = dict(source.metadata)
        for number, confirmation in enumerate(confirmations):
            metadata[f"op{number}.reference"] = confirmation.reference
        return StepResult(
            resource_key=self.resource_key,
            identifier=source.identifier,
            metadata=metadata,
        )
