"""Comparison of replayed sessions against their documents."""

from .comparator import compare, validate
from .models import ComparisonReport, ExitStatus, StepResult, Verdict
from .refine import RefineSummary, refine_document
from .renderers import ReportRenderer

__all__ = [
    "compare",
    "validate",
    "ComparisonReport",
    "ExitStatus",
    "StepResult",
    "Verdict",
    "RefineSummary",
    "refine_document",
    "ReportRenderer",
]
