"""
Project: modelos, carga, validación, planificación, ejecución y drift.
"""

from forja.core.project.detector import DriftReport, detect_drift, merge_diffs
from forja.core.project.executor import ApplyResult, Executor
from forja.core.project.loader import Stack, StackLoader
from forja.core.models import Lifecycle, Node, OutputSpec
from forja.core.project.outputs import OutputValue, evaluate_outputs
from forja.core.project.planner import Action, ChangeEntry, ChangeSet, Planner
from forja.core.project.validator import validate_stack
from forja.core.values import NodeId, Reference, Template

__all__ = [
    "Action",
    "ApplyResult",
    "ChangeEntry",
    "ChangeSet",
    "DriftReport",
    "Executor",
    "Lifecycle",
    "Node",
    "NodeId",
    "OutputSpec",
    "OutputValue",
    "Planner",
    "Reference",
    "Stack",
    "StackLoader",
    "Template",
    "detect_drift",
    "evaluate_outputs",
    "merge_diffs",
    "validate_stack",
]
