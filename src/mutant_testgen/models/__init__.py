"""Data models for mutant-testgen."""

from .data_models import (
    CodeMarker,
    CoverageGap,
    FeedbackLoopSettings,
    MutantLocation,
    MutantRecord,
    MutantStatus,
    MutationDiagnostics,
    Position,
    Priority,
    ProblematicMutator,
    Recommendation,
    SessionStatus,
    StopReason,
)

__all__ = [
    "CodeMarker",
    "CoverageGap",
    "FeedbackLoopSettings",
    "MutantLocation",
    "MutantRecord",
    "MutantStatus",
    "MutationDiagnostics",
    "Position",
    "Priority",
    "ProblematicMutator",
    "Recommendation",
    "SessionStatus",
    "StopReason",
]
