"""Error taxonomy for Resumable-Deployer.

Every failure the sequencer can surface derives from DeploymentError. Errors
are tagged with the failing step once the sequencer knows it, so the run
report and the CLI can name the step without parsing messages.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .orchestrator.models import Step


class DeploymentError(Exception):
    """Base class for all deployment failures."""

    def __init__(
        self,
        message: str,
        step_name: Optional[str] = None,
        step_index: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.step_name = step_name
        self.step_index = step_index

    def tag(self, step: "Step") -> "DeploymentError":
        """给错误打上失败步骤的标记（已有标记时保留）"""
        if self.step_name is None:
            self.step_name = step.name
        if self.step_index is None:
            self.step_index = step.index
        return self

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        if self.step_name is None:
            return self.message
        return f"[step {self.step_index}: {self.step_name}] {self.message}"


class ConfigurationError(DeploymentError):
    """Ledger missing/corrupt, invalid config, catalog or skip list."""


class LedgerConflictError(ConfigurationError):
    """An applied resource key would be overwritten with a different identifier."""

    def __init__(self, resource_key: str, existing: str, attempted: str) -> None:
        super().__init__(
            f"Resource '{resource_key}' is already recorded as {existing}; "
            f"refusing to overwrite with {attempted}. Clear the entry to re-apply."
        )
        self.resource_key = resource_key
        self.existing = existing
        self.attempted = attempted


class StepContractError(ConfigurationError):
    """A step returned a result that cannot be recorded."""


class DependencyMissingError(DeploymentError):
    """A step needs a dependency's identifier that the ledger does not hold."""

    def __init__(self, resource_key: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Dependency '{resource_key}' is not applied in the ledger"
        )
        self.resource_key = resource_key


class RemoteCallError(DeploymentError):
    """The remote action failed, was rejected or timed out."""

    def __init__(
        self,
        message: str,
        reference: Optional[str] = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.reference = reference
        self.retryable = retryable


class PersistenceError(DeploymentError):
    """Writing the ledger to durable storage failed."""
