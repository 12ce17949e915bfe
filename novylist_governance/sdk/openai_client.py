"""
Governed OpenAI client.

Gates every completion behind the rate limiter, the dollar budget and the
token budget, then accounts for actual usage once the call has succeeded.
"""

import logging
import time
from typing import Any, Dict, Optional

from openai import APIStatusError, OpenAI, OpenAIError

from ..config.loader import DEFAULT_CONFIG, GovernanceConfig
from ..core.cost_tracker import CostTracker
from ..core.pricing import estimate_cost, select_model_for_tier
from ..core.rate_limiter import RateLimiter
from ..core.token_budget import TokenBudgetTracker
from ..core.token_counter import approximate_token_count
from ..storage.store import UsageStore
from .results import CompletionData, CompletionResult, ErrorCode, Usage, camelize

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 500
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TOP_P = 1
DEFAULT_PENALTY = 0

EMBEDDING_MODEL = "text-embedding-ada-002"
EMBEDDING_FEATURE = "embeddings"
RECENT_COSTS_LIMIT = 10


def _or_default(value, default):
    return default if value is None else value


class CompletionOrchestrator:
    """Single entry point request handlers use to reach the completion API.

    Sequence for ``complete_text``:
    1. Rate limit check
    2. Model resolution (tier/feature policy unless overridden)
    3. Token estimate for the prompt
    4. Cost estimate and dollar budget check
    5. Token budget check
    6. Upstream call
    7. On success only: consume a rate-limit point, record tokens, record cost

    Checks read shared counters without coordinating with concurrent
    requests, so limits are best-effort under concurrency.
    """

    def __init__(
        self,
        store: UsageStore,
        config: GovernanceConfig = DEFAULT_CONFIG,
        client: Optional[OpenAI] = None
    ):
        """Initialize the orchestrator.

        Args:
            store: Usage store shared by all trackers
            config: Governance policy
            client: OpenAI client; created on first use when omitted
        """
        self.config = config
        self.rate_limiter = RateLimiter(store, config)
        self.token_budget = TokenBudgetTracker(store, config)
        self.cost_tracker = CostTracker(store, config)
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI()
        return self._client

    def complete_text(
        self,
        user_id: str,
        tier: str,
        feature_type: str,
        prompt: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        frequency_penalty: Optional[float] = None,
        presence_penalty: Optional[float] = None,
        model: Optional[str] = None
    ) -> CompletionResult:
        """Run a governed chat completion for one user prompt.

        Args:
            user_id: Caller's user id, also sent upstream for abuse monitoring
            tier: Caller's subscription tier
            feature_type: Feature the request is billed to
            prompt: Fully assembled prompt text
            max_tokens: Output token cap (default 500); also the output estimate
            temperature, top_p, frequency_penalty, presence_penalty: Passed through
            model: Model override; otherwise chosen by tier and feature

        Returns:
            CompletionResult with content, usage, cost and timing, or a failure

        Raises:
            ValueError: If user_id or prompt is empty
        """
        if not user_id or not str(user_id).strip():
            raise ValueError("user_id is required and cannot be empty")
        if not prompt:
            raise ValueError("prompt is required and cannot be empty")

        rate_status = self.rate_limiter.check_rate_limit(user_id, tier)
        if rate_status.is_rate_limited:
            logger.info("Rejected %s request for user %s: daily request limit", feature_type, user_id)
            return CompletionResult.fail(
                ErrorCode.RATE_LIMIT_EXCEEDED,
                "You have reached your daily request limit",
                rate_status.to_dict(),
            )

        model_name = model or select_model_for_tier(tier, feature_type, self.config)
        max_tokens = _or_default(max_tokens, DEFAULT_MAX_TOKENS)

        estimated_input = approximate_token_count(prompt)
        estimated_output = max_tokens
        cost_estimate = estimate_cost(model_name, estimated_input, estimated_output, self.config)

        budget_status = self.cost_tracker.check_budget_limits(user_id, tier, cost_estimate.total_cost)
        if budget_status.has_exceeded_limit:
            logger.info("Rejected %s request for user %s: dollar budget", feature_type, user_id)
            return CompletionResult.fail(
                ErrorCode.BUDGET_EXCEEDED,
                "You have exceeded your budget limit",
                budget_status.to_dict(),
            )

        token_status = self.token_budget.check_token_budget(
            user_id, tier, feature_type, estimated_input + estimated_output
        )
        if not token_status.has_sufficient_budget:
            logger.info("Rejected %s request for user %s: token budget", feature_type, user_id)
            return CompletionResult.fail(
                ErrorCode.TOKEN_BUDGET_EXCEEDED,
                "You have exceeded your token budget",
                token_status.to_dict(),
            )

        params = {
            "model": model_name,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": _or_default(temperature, DEFAULT_TEMPERATURE),
            "top_p": _or_default(top_p, DEFAULT_TOP_P),
            "frequency_penalty": _or_default(frequency_penalty, DEFAULT_PENALTY),
            "presence_penalty": _or_default(presence_penalty, DEFAULT_PENALTY),
            "user": user_id,
        }

        start = time.perf_counter()
        try:
            completion = self.client.chat.completions.create(**params)
            processing_time = int((time.perf_counter() - start) * 1000)
            content, input_tokens, output_tokens = _chat_output(completion, estimated_input)
        except OpenAIError as e:
            return _upstream_failure(e, "Error calling OpenAI API")
        except Exception:
            logger.exception("Unexpected error during OpenAI completion for user %s", user_id)
            return _service_failure("Error calling OpenAI API")

        rate_after, receipt = self._account(
            user_id, tier, feature_type, model_name, input_tokens, output_tokens, rate_status
        )

        return CompletionResult.ok(CompletionData(
            model=model_name,
            content=content,
            usage=Usage(prompt_tokens=input_tokens, completion_tokens=output_tokens),
            processing_time=processing_time,
            input_cost=receipt.input_cost,
            output_cost=receipt.output_cost,
            total_cost=receipt.total_cost,
            rate_limit_remaining=rate_after.remaining,
            rate_limit_reset=rate_after.reset,
        ))

    def generate_embeddings(self, user_id: str, tier: str, text: str) -> CompletionResult:
        """Run a governed embeddings call.

        Checks the rate limit and the dollar budget (no token budget check),
        then accounts for the call under the ``embeddings`` feature.
        """
        if not user_id or not str(user_id).strip():
            raise ValueError("user_id is required and cannot be empty")
        if not text:
            raise ValueError("text is required and cannot be empty")

        rate_status = self.rate_limiter.check_rate_limit(user_id, tier)
        if rate_status.is_rate_limited:
            return CompletionResult.fail(
                ErrorCode.RATE_LIMIT_EXCEEDED,
                "You have reached your daily request limit",
                rate_status.to_dict(),
            )

        estimated_tokens = approximate_token_count(text)
        cost_estimate = estimate_cost(EMBEDDING_MODEL, estimated_tokens, 0, self.config)
        budget_status = self.cost_tracker.check_budget_limits(user_id, tier, cost_estimate.total_cost)
        if budget_status.has_exceeded_limit:
            return CompletionResult.fail(
                ErrorCode.BUDGET_EXCEEDED,
                "You have exceeded your budget limit",
                budget_status.to_dict(),
            )

        start = time.perf_counter()
        try:
            response = self.client.embeddings.create(model=EMBEDDING_MODEL, input=text, user=user_id)
            processing_time = int((time.perf_counter() - start) * 1000)
            embedding = list(response.data[0].embedding) if response.data else []
            actual_tokens = (response.usage.total_tokens if response.usage else None) or estimated_tokens
        except OpenAIError as e:
            return _upstream_failure(e, "Error calling OpenAI Embeddings API")
        except Exception:
            logger.exception("Unexpected error during OpenAI embeddings for user %s", user_id)
            return _service_failure("Error calling OpenAI Embeddings API")

        rate_after, receipt = self._account(
            user_id, tier, EMBEDDING_FEATURE, EMBEDDING_MODEL, actual_tokens, 0, rate_status
        )

        return CompletionResult.ok(CompletionData(
            model=EMBEDDING_MODEL,
            embedding=embedding,
            usage=Usage(prompt_tokens=actual_tokens, completion_tokens=0),
            processing_time=processing_time,
            input_cost=receipt.input_cost,
            output_cost=receipt.output_cost,
            total_cost=receipt.total_cost,
            rate_limit_remaining=rate_after.remaining,
            rate_limit_reset=rate_after.reset,
        ))

    def _account(self, user_id, tier, feature_type, model_name, input_tokens, output_tokens, rate_status):
        """Post-success accounting: rate-limit point, token usage, cost.

        ``rate_status`` is the pre-call check; it stands in for the consumed
        status when the store cannot be written.
        """
        rate_after = self.rate_limiter.consume_rate_limit(user_id, tier, fallback=rate_status)
        self.token_budget.record_token_usage(user_id, tier, feature_type, input_tokens + output_tokens)
        receipt = self.cost_tracker.record_cost(
            user_id, tier, feature_type, model_name, input_tokens, output_tokens
        )
        return rate_after, receipt

    def estimate_request_cost(
        self,
        user_id: str,
        tier: str,
        feature_type: str,
        prompt_tokens: Optional[int] = None,
        output_tokens: Optional[int] = None,
        model: Optional[str] = None
    ) -> Dict[str, Any]:
        """Price a prospective request and say whether it would fit the budget.

        Read-only; token counts default to 500 each.
        """
        model_name = model or select_model_for_tier(tier, feature_type, self.config)
        estimate = estimate_cost(
            model_name,
            prompt_tokens or DEFAULT_MAX_TOKENS,
            output_tokens or DEFAULT_MAX_TOKENS,
            self.config,
        )
        budget = self.cost_tracker.check_budget_limits(user_id, tier, estimate.total_cost)

        return camelize({
            "estimate": estimate.to_dict(),
            "budget": {
                "would_exceed_limit": budget.has_exceeded_limit,
                "daily_usage": budget.daily_usage,
                "monthly_usage": budget.monthly_usage,
                "daily_remaining": budget.daily_remaining,
                "monthly_remaining": budget.monthly_remaining,
            },
            "model_selected": model_name,
            "tier_name": self.config.normalize_tier(tier),
        })

    def get_user_usage_stats(self, user_id: str, tier: str) -> Dict[str, Any]:
        """Aggregate read-only usage view for display to the user."""
        rate_status = self.rate_limiter.check_rate_limit(user_id, tier)
        report = self.cost_tracker.get_user_budget_status(user_id, tier)
        history = self.cost_tracker.get_user_cost_history(user_id, RECENT_COSTS_LIMIT)

        return camelize({
            "rate_limit": {
                "limit": rate_status.limit,
                "remaining": rate_status.remaining,
                "reset": rate_status.reset,
            },
            "budget": {
                "daily": {
                    "usage": report.daily_usage,
                    "limit": report.daily_limit,
                    "remaining": report.daily_remaining,
                    "percent_used": report.daily_percent_used,
                },
                "monthly": {
                    "usage": report.monthly_usage,
                    "limit": report.monthly_limit,
                    "remaining": report.monthly_remaining,
                    "percent_used": report.monthly_percent_used,
                },
            },
            "features": report.features,
            "recent_costs": [record.to_summary() for record in history],
        })


def _chat_output(completion, estimated_input: int):
    """Extract ``(content, input_tokens, output_tokens)`` from a chat completion.

    Missing usage falls back to the input estimate and an approximation of
    the returned content.
    """
    content = ""
    if completion.choices:
        content = completion.choices[0].message.content or ""

    usage = completion.usage
    input_tokens = (usage.prompt_tokens if usage else None) or estimated_input
    output_tokens = (usage.completion_tokens if usage else None) or approximate_token_count(content)
    return content, input_tokens, output_tokens


def _service_failure(message: str) -> CompletionResult:
    """Failure for errors that did not come from the OpenAI client."""
    return CompletionResult.fail(
        ErrorCode.AI_SERVICE_ERROR,
        message,
        {"status": None, "status_text": None, "data": None},
    )


def _upstream_failure(error: OpenAIError, fallback_message: str) -> CompletionResult:
    """Classify an upstream error; nothing has been recorded at this point."""
    status = None
    status_text = None
    data = None
    if isinstance(error, APIStatusError):
        status = error.status_code
        status_text = error.response.reason_phrase
        data = error.body

    logger.error("OpenAI API error (status=%s): %s", status, error)
    code = ErrorCode.RATE_LIMIT_EXCEEDED if status == 429 else ErrorCode.AI_SERVICE_ERROR
    return CompletionResult.fail(
        code,
        str(error) or fallback_message,
        {"status": status, "status_text": status_text, "data": data},
    )
