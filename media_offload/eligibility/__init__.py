"""
Eligibility filter for migration and optimization.
"""

from .criteria import (
    MIGRATION_MIME_TYPES,
    OPTIMIZATION_MIME_TYPES,
    EligibilityFilter,
    EligibilityVerdict,
    IneligibleReason,
)

__all__ = [
    "EligibilityFilter",
    "EligibilityVerdict",
    "IneligibleReason",
    "MIGRATION_MIME_TYPES",
    "OPTIMIZATION_MIME_TYPES",
]
