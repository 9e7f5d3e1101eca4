"""
Committee Engine: multi-provider consensus for column-to-field mapping.
"""

from .audit import AuditSink, FileAuditSink, InMemoryAuditSink
from .engine import CommitteeEngine
from .errors import (
    AuditSinkError,
    CommitteeError,
    ConfigurationError,
    InsufficientProviders,
    PoolExhausted,
)
from .evidence import EvidenceContractBuilder, detect_language
from .models import CandidateChoice, CommitteeResult, EvidenceContract, FieldDecision

__version__ = "0.1.0"

__all__ = [
    # Engine
    "CommitteeEngine",
    # Evidence
    "EvidenceContractBuilder",
    "detect_language",
    # Models
    "CandidateChoice",
    "CommitteeResult",
    "EvidenceContract",
    "FieldDecision",
    # Audit
    "AuditSink",
    "FileAuditSink",
    "InMemoryAuditSink",
    # Errors
    "AuditSinkError",
    "CommitteeError",
    "ConfigurationError",
    "InsufficientProviders",
    "PoolExhausted",
]
