"""Action invokers: the boundary to the remote provisioning backend."""

from .base import ActionInvoker, Confirmation, Handle, Operation
from .http import HttpActionInvoker

__all__ = [
    "ActionInvoker",
    "Confirmation",
    "Handle",
    "Operation",
    "HttpActionInvoker",
]
