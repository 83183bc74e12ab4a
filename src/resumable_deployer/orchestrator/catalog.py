"""Step catalog: the fixed, dependency-ordered list of pipeline steps."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional

from ..errors import ConfigurationError
from .models import Step

logger = logging.getLogger(__name__)


class StepCatalog:
    """
    步骤目录

    顺序在构建时确定一次：声明顺序满足依赖时原样保留，
    否则按稳定拓扑排序（以声明顺序作为平局规则）。运行时不再重新排序。
    """

    def __init__(self, steps: Iterable[Step], external_keys: Iterable[str] = ()) -> None:
        declared = list(steps)
        self.external_keys = frozenset(external_keys)
        self._validate(declared, self.external_keys)
        ordered = self._order(declared, self.external_keys)
        self._steps: List[Step] = [
            dataclasses.replace(step, index=position)
            for position, step in enumerate(ordered, 1)
        ]
        self._by_key: Dict[str, Step] = {s.resource_key: s for s in self._steps}

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __getitem__(self, position: int) -> Step:
        return self._steps[position]

    @property
    def steps(self) -> List[Step]:
        return list(self._steps)

    def by_index(self, index: int) -> Step:
        if not 1 <= index <= len(self._steps):
            raise KeyError(f"No step with index {index}")
        return self._steps[index - 1]

    def by_key(self, resource_key: str) -> Step:
        return self._by_key[resource_key]

    def producer_of(self, resource_key: str) -> Optional[Step]:
        return self._by_key.get(resource_key)

    def dependents_of(self, resource_key: str) -> List[Step]:
        return [s for s in self._steps if resource_key in s.depends_on]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [step.to_dict() for step in self._steps],
            "external_keys": sorted(self.external_keys),
        }

    @staticmethod
    def _validate(steps: List[Step], external_keys: FrozenSet[str]) -> None:
        names = set()
        keys = set()
        for step in steps:
            if not step.name or not step.resource_key:
                raise ConfigurationError("Every step needs a name and a resource key")
            if step.name in names:
                raise ConfigurationError(f"Duplicate step name: {step.name}")
            if step.resource_key in keys:
                raise ConfigurationError(f"Duplicate resource key: {step.resource_key}")
            names.add(step.name)
            keys.add(step.resource_key)

        for step in steps:
            if step.resource_key in step.depends_on:
                raise ConfigurationError(f"Step '{step.name}' depends on itself")
            unknown = sorted(step.depends_on - keys - external_keys)
            if unknown:
                raise ConfigurationError(
                    f"Step '{step.name}' depends on resources no step produces: {unknown}"
                )

    @staticmethod
    def _order(steps: List[Step], external_keys: FrozenSet[str]) -> List[Step]:
        placed: List[Step] = []
        done = set(external_keys)
        pending = list(steps)
        while pending:
            for position, step in enumerate(pending):
                if step.depends_on <= done:
                    placed.append(step)
                    done.add(step.resource_key)
                    del pending[position]
                    break
            else:
                cycle = ", ".join(s.name for s in pending)
                raise ConfigurationError(f"Dependency cycle between steps: {cycle}")

        if [s.name for s in placed] != [s.name for s in steps]:
            logger.warning(
                "Declared step order violates dependencies; reordered to: %s",
                " -> ".join(s.name for s in placed),
            )
        return placed
