"""Base class for action invokers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class Operation:
    """A mutating remote operation. The core never interprets the payload."""

    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "payload": self.payload, "description": self.description}


@dataclass
class Handle:
    """Reference to a submitted operation awaiting confirmation."""

    reference: str
    operation: Operation


@dataclass
class Confirmation:
    """Remote confirmation of an operation."""

    reference: str
    identifier: str = ""
    metadata: Dict[str, str] = field(default_factory=dict)


class ActionInvoker(ABC):
    """Abstract base class for the component that performs remote mutations."""

    @abstractmethod
    def submit(self, operation: Operation) -> Handle:
        """
        Submit an operation to the remote backend.

        Raises:
            RemoteCallError: If the backend refuses the submission
        """

    @abstractmethod
    def await_confirmation(self, handle: Handle) -> Confirmation:
        """
        Block until the operation is confirmed.

        Raises:
            RemoteCallError: If the operation fails, is rejected or times out
        """

    def execute(self, operation: Operation) -> Confirmation:
        """Submit and wait for confirmation."""
        return self.await_confirmation(self.submit(operation))

    def balance(self, account: str) -> Optional[float]:
        """Available resources for ``account``; None when the backend has no notion of it."""
        return None

    def close(self) -> None:
        pass
