"""
Consensus mechanism for the committee.

Provides output validation, weighted voting, consensus classification,
and weight calibration.
"""

from .calibration import (
    CalibrationReport,
    ProviderCalibration,
    WeightCalibrator,
    labels_from_golden,
)
from .classifier import ConsensusClassifier, DecisionNote, ReviewReason
from .validation import OutputValidator, ValidatedAnswer
from .voting import FieldTally, WeightedVotingAggregator
from .weights import WeightSnapshot, WeightStore

__all__ = [
    # Validation
    "OutputValidator",
    "ValidatedAnswer",
    # Voting
    "FieldTally",
    "WeightedVotingAggregator",
    # Classification
    "ConsensusClassifier",
    "DecisionNote",
    "ReviewReason",
    # Weights
    "WeightSnapshot",
    "WeightStore",
    "WeightCalibrator",
    "CalibrationReport",
    "ProviderCalibration",
    "labels_from_golden",
]
