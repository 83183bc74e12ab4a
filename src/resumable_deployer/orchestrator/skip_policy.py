"""Operator-supplied skip policy."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, FrozenSet, Iterable, Optional

from ..errors import ConfigurationError

if TYPE_CHECKING:
    from .catalog import StepCatalog

logger = logging.getLogger(__name__)


def parse_step_list(value: Optional[str]) -> FrozenSet[int]:
    """Parse ``"1,3,5-7"`` into step indices."""
    indices = set()
    if not value:
        return frozenset()
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            if "-" in part:
                start, end = (int(p) for p in part.split("-", 1))
                if start > end:
                    raise ValueError(f"empty range {part}")
                indices.update(range(start, end + 1))
            else:
                indices.add(int(part))
        except ValueError as exc:
            raise ConfigurationError(f"Invalid step list '{value}': {exc}") from exc
    return frozenset(indices)


class SkipPolicy:
    """显式的跳过名单（deny）与可选的执行名单（allow），从不自动推断"""

    def __init__(
        self,
        skip: Iterable[int] = (),
        only: Optional[Iterable[int]] = None,
    ) -> None:
        self.skipped: FrozenSet[int] = frozenset(int(i) for i in skip)
        self.only: Optional[FrozenSet[int]] = (
            frozenset(int(i) for i in only) if only is not None else None
        )

    def skip(self, step_index: int) -> bool:
        if step_index in self.skipped:
            return True
        return self.only is not None and step_index not in self.only

    def merge(self, *skips: Iterable[int]) -> "SkipPolicy":
        combined = set(self.skipped)
        for extra in skips:
            combined.update(int(i) for i in extra)
        return SkipPolicy(skip=combined, only=self.only)

    def validate(self, catalog: "StepCatalog") -> None:
        known = {step.index for step in catalog}
        listed = set(self.skipped) | set(self.only or ())
        unknown = sorted(listed - known)
        if unknown:
            raise ConfigurationError(
                f"Skip policy names steps the catalog does not have: {unknown} "
                f"(valid: 1-{len(catalog)})"
            )
        for index in sorted(self.skipped):
            logger.info("Operator skip: step %d (%s)", index, catalog.by_index(index).name)

    def __repr__(self) -> str:
        return f"SkipPolicy(skip={sorted(self.skipped)}, only={sorted(self.only) if self.only is not None else None})"
