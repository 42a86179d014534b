"""Eligibility gate deciding when a user's summary is due."""

from activity_digest.eligibility.gate import (
    EligibilityDecision,
    EligibilityGate,
    EligibilityReason,
)


__all__ = ["EligibilityDecision", "EligibilityGate", "EligibilityReason"]
