"""
Data models for storage layer.

Defines the persisted per-call cost record.
"""

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone


@dataclass(frozen=True)
class CostRecord:
    """Immutable record of one completed AI call.

    Written once after the upstream call succeeds and never modified; it
    expires with its TTL.
    """
    request_id: str
    user_id: str
    tier: str
    feature_type: str
    model_name: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    input_cost: float
    output_cost: float
    total_cost: float
    timestamp: datetime
    daily_key: str
    monthly_key: str

    def to_json(self) -> str:
        data = asdict(self)
        data["timestamp"] = int(self.timestamp.timestamp() * 1000)
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "CostRecord":
        """Rebuild a record written by ``to_json``.

        Raises:
            ValueError: If the payload is not a complete record
        """
        try:
            data = json.loads(raw)
            data["timestamp"] = datetime.fromtimestamp(data["timestamp"] / 1000, tz=timezone.utc)
            return cls(**data)
        except (TypeError, KeyError, json.JSONDecodeError) as e:
            raise ValueError(f"Malformed cost record: {e}")

    def to_summary(self) -> dict:
        """Compact view used in usage reports."""
        return {
            "id": self.request_id,
            "feature": self.feature_type,
            "model": self.model_name,
            "tokens": self.total_tokens,
            "cost": self.total_cost,
            "timestamp": int(self.timestamp.timestamp() * 1000),
        }
