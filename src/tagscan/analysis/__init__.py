"""
Analysis module for TagScan.

Provides:
- RequestAssembler: selected items -> SubmissionRequest
- AnalysisClient: POST /api/analyze
- AnalysisResult: typed, defaulted service response
"""

from .client import AnalysisClient
from .request_assembler import RequestAssembler
from .result import AnalysisResult, ConsensusVote, Decision

__all__ = [
    "AnalysisClient",
    "AnalysisResult",
    "ConsensusVote",
    "Decision",
    "RequestAssembler",
]
