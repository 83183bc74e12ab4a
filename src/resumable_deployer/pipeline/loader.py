"""Load declarative pipeline definitions from JSON files."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Union

from ..errors import ConfigurationError, RemoteCallError
from ..invoker import Operation
from ..orchestrator.catalog import StepCatalog
from ..orchestrator.ledger import DeploymentLedger
from ..orchestrator.models import RunContext, Step
from ..orchestrator.verification import VerificationPass
from .steps import (
    OperationSpec,
    OperationStepAction,
    find_ledger_references,
    resolve_references,
)

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """完整的部署流水线定义"""
    name: str
    catalog: StepCatalog
    verification: VerificationPass = field(default_factory=VerificationPass)
    parameters: Dict[str, Any] = field(default_factory=dict)


def _operation_specs(step_name: str, payload: Any) -> List[OperationSpec]:
    if not isinstance(payload, list):
        raise ConfigurationError(f"Step '{step_name}': 'operations' must be a list")
    specs = []
    for item in payload:
        if not isinstance(item, dict) or not item.get("kind"):
            raise ConfigurationError(f"Step '{step_name}': every operation needs a 'kind'")
        specs.append(
            OperationSpec(
                kind=item["kind"],
                payload=item.get("payload", {}) or {},
                description=item.get("description", ""),
            )
        )
    return specs


def _build_step(data: Dict[str, Any]) -> Step:
    name = data.get("name")
    resource_key = data.get("resource_key")
    if not name or not resource_key:
        raise ConfigurationError("Every pipeline step needs 'name' and 'resource_key'")

    operations = _operation_specs(name, data.get("operations", []))
    declared = set(data.get("depends_on", []) or [])
    # 操作中引用的账本条目自动视为依赖
    referenced = set()
    for spec in operations:
        referenced |= find_ledger_references(spec.payload)
    implicit = referenced - declared
    if implicit:
        logger.debug("Step '%s' references undeclared dependencies %s", name, sorted(implicit))

    return Step(
        name=name,
        resource_key=resource_key,
        action=OperationStepAction(
            resource_key=resource_key,
            operations=operations,
            identifier_from=int(data.get("identifier_from", 0)),
        ),
        depends_on=frozenset(declared | referenced),
        description=data.get("description", ""),
    )


def _build_check(data: Dict[str, Any]):
    kind = data.get("kind")
    if not kind:
        raise ConfigurationError("Every verification check needs a 'kind'")
    payload = data.get("payload", {}) or {}
    expect = {str(k): str(v) for k, v in (data.get("expect", {}) or {}).items()}

    def check(ledger: DeploymentLedger, context: RunContext) -> str:
        operation = Operation(
            kind=kind,
            payload=resolve_references(payload, ledger, context),
            description=data.get("name", kind),
        )
        confirmation = context.require_invoker().execute(operation)
        for key, wanted in resolve_references(expect, ledger, context).items():
            actual = confirmation.metadata.get(key)
            if actual != wanted:
                raise RemoteCallError(
                    f"expected {key}={wanted}, got {actual}",
                    reference=confirmation.reference,
                    retryable=False,
                )
        return confirmation.identifier

    return check


def parse_pipeline(payload: Dict[str, Any]) -> Pipeline:
    if not isinstance(payload, dict):
        raise ConfigurationError("Pipeline definition must be a JSON object")
    raw_steps = payload.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise ConfigurationError("Pipeline definition needs a non-empty 'steps' list")

    external = payload.get("external", []) or []
    if not isinstance(external, list):
        raise ConfigurationError("Pipeline 'external' must be a list of resource keys")
    catalog = StepCatalog((_build_step(item) for item in raw_steps), external_keys=external)

    verification = VerificationPass()
    for item in payload.get("verify", []) or []:
        verification.add(
            name=item.get("name") or item.get("kind", "check"),
            check=_build_check(item),
            description=item.get("description", ""),
        )

    return Pipeline(
        name=payload.get("name", "pipeline"),
        catalog=catalog,
        verification=verification,
        parameters=payload.get("parameters", {}) or {},
    )


def load_pipeline(path: Union[str, Path]) -> Pipeline:
    """Load a pipeline definition file."""
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Pipeline file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Pipeline file {path} is not valid JSON: {exc}") from exc
    pipeline = parse_pipeline(payload)
    logger.info("Loaded pipeline '%s' with %d steps", pipeline.name, len(pipeline.catalog))
    return pipeline
