"""
Token-savings estimator

Heuristic accounting of the model tokens avoided by running N capability
calls inside one script instead of spending one model turn per call. The
figure is an estimate, not a measurement: payload sizes are converted to
tokens at a fixed characters-per-token ratio and turn overheads are fixed
constants from ``TokenCostModel``.

For a trace of n calls with payload tokens p_i (result or error) and
argument tokens a_i:

- intermediate results:  sum(p_i)
  results that would have been sent back to the model
- round-trip context:    sum over i=1..n-1 of (context_base + sum(p_j, j < i))
  context the model re-reads on every additional turn
- tool-call overhead:    sum(overhead(origin_i) + a_i)
  the tool_use / tool_result framing of each call
- model decisions:       (n - 1) * decision_tokens
  output tokens the model spends deciding each next call
"""

import math
from dataclasses import dataclass
from typing import Iterable

from .capabilities import CapabilityOrigin
from .serialization import estimate_size
from .tracer import CapabilityCallRecord


@dataclass(frozen=True)
class TokenCostModel:
    """Constants of the savings heuristic"""
    chars_per_token: int = 4
    context_base_tokens: int = 200
    local_call_overhead_tokens: int = 40
    bridged_call_overhead_tokens: int = 60
    decision_tokens: int = 80

    def tokens_for(self, value) -> int:
        size = estimate_size(value)
        return math.ceil(size / self.chars_per_token) if size else 0

    def overhead_for(self, origin: CapabilityOrigin) -> int:
        if origin is CapabilityOrigin.BRIDGED:
            return self.bridged_call_overhead_tokens
        return self.local_call_overhead_tokens


@dataclass(frozen=True)
class TokenSavingsEstimate:
    """Four-component savings estimate for one run"""
    intermediate_result_tokens: int = 0
    round_trip_context_tokens: int = 0
    tool_call_overhead_tokens: int = 0
    model_decision_tokens: int = 0
    call_count: int = 0

    @property
    def total(self) -> int:
        return (
            self.intermediate_result_tokens
            + self.round_trip_context_tokens
            + self.tool_call_overhead_tokens
            + self.model_decision_tokens
        )

    @property
    def breakdown(self) -> str:
        if self.call_count == 0:
            return "No capability calls were made, no tokens saved."
        return (
            f"Batched {self.call_count} capability calls into one turn, "
            f"saving ~{self.total:,} tokens: "
            f"{self.intermediate_result_tokens:,} intermediate results, "
            f"{self.round_trip_context_tokens:,} round-trip context, "
            f"{self.tool_call_overhead_tokens:,} tool-call overhead, "
            f"{self.model_decision_tokens:,} model decisions."
        )

    def to_dict(self) -> dict:
        return {
            "intermediateResults": self.intermediate_result_tokens,
            "roundTripContext": self.round_trip_context_tokens,
            "toolCallOverhead": self.tool_call_overhead_tokens,
            "modelDecisions": self.model_decision_tokens,
            "total": self.total,
        }


def estimate_token_savings(
    trace: Iterable[CapabilityCallRecord],
    cost_model: TokenCostModel | None = None
) -> TokenSavingsEstimate:
    """Estimate the savings of a completed trace"""
    model = cost_model or TokenCostModel()
    records = list(trace)
    n = len(records)
    if n == 0:
        return TokenSavingsEstimate()

    payloads = [
        model.tokens_for(r.error if r.error is not None else r.result)
        for r in records
    ]

    intermediate = sum(payloads)

    round_trip = 0
    accumulated = 0
    for i in range(1, n):
        accumulated += payloads[i - 1]
        round_trip += model.context_base_tokens + accumulated

    overhead = sum(
        model.overhead_for(r.origin) + model.tokens_for(r.args)
        for r in records
    )

    decisions = (n - 1) * model.decision_tokens

    return TokenSavingsEstimate(
        intermediate_result_tokens=intermediate,
        round_trip_context_tokens=round_trip,
        tool_call_overhead_tokens=overhead,
        model_decision_tokens=decisions,
        call_count=n,
    )
