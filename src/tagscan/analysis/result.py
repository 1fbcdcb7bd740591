"""
Analysis service response schema.

The service response shape has drifted over time (camelCase vs snake_case,
consensus votes as a list, a dict or missing). The schema below maps every
known variant onto one typed model with explicit defaults. The untouched
response is kept in `raw`.
"""

import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class Decision(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"

    @classmethod
    def parse(cls, value: Any) -> "Decision":
        """Unknown or missing decisions map to HOLD."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        return cls.HOLD


def _first(data: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


class ConsensusVote(BaseModel):
    """One model's vote in the valuation consensus."""

    provider_name: str = "Unknown"
    estimated_value: float = 0.0
    decision: Decision = Decision.HOLD
    confidence: float = 0.5
    success: bool = True
    weight: float = 1.0
    response_time_ms: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return {}
        raw_response = data.get("rawResponse")
        if not isinstance(raw_response, dict):
            raw_response = {}
        return {
            "provider_name": _first(data, "provider_name", "providerName", "model", default="Unknown"),
            "estimated_value": _first(
                data, "estimated_value", "estimatedValue",
                default=raw_response.get("estimatedValue", 0.0),
            ),
            "decision": Decision.parse(
                _first(data, "decision", default=raw_response.get("decision"))
            ),
            "confidence": _first(data, "confidence", default=raw_response.get("confidence", 0.5)),
            "success": _first(data, "success", default=True),
            "weight": _first(data, "weight", default=1.0),
            "response_time_ms": _first(data, "response_time_ms", "responseTime", default=0.0),
        }


class AnalysisResult(BaseModel):
    """Valuation returned by the analysis service."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    item_name: str = "Unknown Item"
    estimated_value: float = 0.0
    decision: Decision = Decision.HOLD
    confidence_score: float = 0.0
    summary_reasoning: str = "Analysis complete"
    valuation_factors: list[str] = Field(default_factory=list)
    consensus_votes: list[ConsensusVote] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise ValueError("Analysis response must be a JSON object")
        if "consensus_votes" in data:
            votes = data["consensus_votes"]
        else:
            consensus = _first(data, "hydraConsensus", "consensus", default={})
            if isinstance(consensus, dict) and ("votes" in consensus or "allVotes" in consensus):
                votes = _first(consensus, "votes", "allVotes", default=[])
            else:
                votes = consensus

        normalized = {
            "item_name": _first(data, "item_name", "itemName", default="Unknown Item"),
            "estimated_value": _first(data, "estimated_value", "estimatedValue", default=0.0),
            "decision": Decision.parse(data.get("decision")),
            "confidence_score": _first(data, "confidence_score", "confidenceScore", default=0.0),
            "summary_reasoning": data.get("summary_reasoning") or "Analysis complete",
            "valuation_factors": data.get("valuation_factors") or [],
            "consensus_votes": votes,
            "raw": data["raw"] if isinstance(data.get("raw"), dict) else data,
        }
        if data.get("id"):
            normalized["id"] = str(data["id"])
        return normalized

    @field_validator("consensus_votes", mode="before")
    @classmethod
    def coerce_votes(cls, v: Any) -> list:
        """Votes may arrive as a list, a dict keyed by provider, or null."""
        if v is None:
            return []
        if isinstance(v, dict):
            return [
                {"providerName": key, **vote} for key, vote in v.items() if isinstance(vote, dict)
            ]
        if isinstance(v, list):
            return v
        return []

    @field_validator("valuation_factors", mode="before")
    @classmethod
    def coerce_factors(cls, v: Any) -> list:
        if isinstance(v, str):
            return [v]
        if isinstance(v, list):
            return [str(f) for f in v]
        return []
