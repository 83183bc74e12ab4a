"""Declarative pipeline definitions."""

from .loader import Pipeline, load_pipeline, parse_pipeline
from .steps import OperationSpec, OperationStepAction, resolve_references

__all__ = [
    "Pipeline",
    "load_pipeline",
    "parse_pipeline",
    "OperationSpec",
    "OperationStepAction",
    "resolve_references",
]
