"""
Result types returned across the governance boundary.

Every outcome of an orchestrated call, including rejections and upstream
failures, is a CompletionResult; nothing is raised to request handlers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """Machine-readable failure codes."""
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    TOKEN_BUDGET_EXCEEDED = "TOKEN_BUDGET_EXCEEDED"
    AI_SERVICE_ERROR = "AI_SERVICE_ERROR"


def camelize(value: Any) -> Any:
    """Convert snake_case dict keys to camelCase, recursively."""
    if isinstance(value, dict):
        return {_camel(k) if isinstance(k, str) else k: camelize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [camelize(v) for v in value]
    return value


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class CompletionData:
    """Success payload of a completion or embedding call."""
    model: str
    usage: Usage
    processing_time: int  # milliseconds
    input_cost: float
    output_cost: float
    total_cost: float
    rate_limit_remaining: int
    rate_limit_reset: int
    content: Optional[str] = None
    embedding: Optional[List[float]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "model": self.model,
            "usage": {
                "promptTokens": self.usage.prompt_tokens,
                "completionTokens": self.usage.completion_tokens,
                "totalTokens": self.usage.total_tokens,
            },
            "processingTime": self.processing_time,
            "cost": {
                "inputCost": self.input_cost,
                "outputCost": self.output_cost,
                "totalCost": self.total_cost,
            },
            "rateLimitRemaining": self.rate_limit_remaining,
            "rateLimitReset": self.rate_limit_reset,
        }
        if self.content is not None:
            data["content"] = self.content
        if self.embedding is not None:
            data["embedding"] = self.embedding
        return data


@dataclass(frozen=True)
class CompletionError:
    code: ErrorCode
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": camelize(self.details),
        }


@dataclass(frozen=True)
class CompletionResult:
    """Either ``data`` (success) or ``error`` (failure), never both."""
    success: bool
    data: Optional[CompletionData] = None
    error: Optional[CompletionError] = None

    @classmethod
    def ok(cls, data: CompletionData) -> "CompletionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None) -> "CompletionResult":
        return cls(success=False, error=CompletionError(code, message, details or {}))

    def to_dict(self) -> Dict[str, Any]:
        """JSON shape handed to HTTP callers."""
        if self.success:
            return {"success": True, "data": self.data.to_dict()}
        return {"success": False, "error": self.error.to_dict()}
