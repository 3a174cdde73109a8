"""Per-invocation output budgeting for multi-item tool results.

Three limits, applied cheapest first:
1. item count: admit() trims the ordered candidate list by policy;
2. per-item size: check_size() skips oversized items individually;
3. aggregate tokens: try_accept() accounts each item's estimated tokens.

An OutputBudget belongs to exactly one invocation and is discarded when
it returns. Every skip leaves a SkipRecord with a reason string.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, TypeVar

import structlog

from src.constants import CHARS_PER_TOKEN

if TYPE_CHECKING:
    from src.config.settings import ToolOutputSettings

logger = structlog.get_logger()

T = TypeVar("T")

TRUNCATION_MARKER = "\n\n[CONTENT TRUNCATED DUE TO TOKEN LIMIT]"
# Below this many remaining tokens a truncated prefix is not worth including
MIN_TRUNCATE_TOKENS = 100
# Flat estimate for inline images / PDFs
NON_TEXT_TOKENS = 85


def estimate_tokens(text: str) -> int:
    """Deterministic token estimate from content length."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def plural(unit: str) -> str:
    if unit.endswith(("s", "x", "ch", "sh")):
        return unit + "es"
    if unit.endswith("y"):
        return unit[:-1] + "ies"
    return unit + "s"


def overflow_message(total: int, limit: int, unit: str = "file") -> str:
    """Narrowing suggestion returned when a warn-policy count overflow refuses everything."""
    units = plural(unit)
    return (
        f"Found {total} {units} matching your pattern, but the limit is {limit} {units}. "
        "Please use more specific patterns to narrow your search."
    )


class BudgetPolicy(StrEnum):
    warn = "warn"
    truncate = "truncate"
    sample = "sample"


@dataclass(frozen=True)
class SkipRecord:
    """One skipped item, or an aggregate of `count` skipped items."""

    path: str
    reason: str
    count: int = 1


@dataclass(frozen=True)
class Accepted:
    content: str
    tokens: int
    truncated: bool = False


@dataclass(frozen=True)
class Rejected:
    reason: str
    stop: bool = False


BudgetDecision = Accepted | Rejected


@dataclass
class BudgetReport:
    accepted: list[str] = field(default_factory=list)
    skipped: list[SkipRecord] = field(default_factory=list)
    tokens: int = 0

    @property
    def skipped_count(self) -> int:
        return sum(record.count for record in self.skipped)


def describe_skips(records: Sequence[SkipRecord], *, max_listed: int = 5) -> str:
    """One-line rendering of skip reasons for a human summary."""
    listed = [f"`{r.path}` ({r.reason})" for r in records[:max_listed]]
    if len(records) > max_listed:
        listed.append(f"...and {len(records) - max_listed} more")
    return "; ".join(listed)


def summary_with_skips(headline: str, budget: OutputBudget) -> str:
    """Append the skip count and reasons to a one-line summary."""
    skipped = budget.skipped
    if not skipped:
        return headline
    count = sum(record.count for record in skipped)
    return f"{headline}; skipped {count} item(s): {describe_skips(skipped)}"


class OutputBudget:
    """Mutable accumulator enforcing item, size and token limits."""

    def __init__(
        self,
        *,
        max_items: int,
        max_item_bytes: int,
        max_aggregate_tokens: int,
        policy: BudgetPolicy | str = BudgetPolicy.warn,
    ) -> None:
        if max_items <= 0 or max_item_bytes <= 0 or max_aggregate_tokens <= 0:
            raise ValueError("OutputBudget limits must be positive")
        self.max_items = max_items
        self.max_item_bytes = max_item_bytes
        self.max_aggregate_tokens = max_aggregate_tokens
        self.policy = BudgetPolicy(policy)

        self._items_accepted = 0
        self._tokens = 0
        self._accepted: list[str] = []
        self._skipped: list[SkipRecord] = []
        self._stopped = False
        self._count_overflowed = False

    @classmethod
    def from_settings(cls, settings: ToolOutputSettings) -> OutputBudget:
        return cls(
            max_items=settings.max_items,
            max_item_bytes=settings.item_size_limit,
            max_aggregate_tokens=settings.max_tokens,
            policy=settings.truncate_mode,
        )

    @property
    def items_accepted(self) -> int:
        return self._items_accepted

    @property
    def tokens_accumulated(self) -> int:
        return self._tokens

    @property
    def exhausted(self) -> bool:
        """True once the budget has stopped accepting items."""
        return self._stopped

    @property
    def count_overflowed(self) -> bool:
        """True when admit() refused a candidate set under the warn policy."""
        return self._count_overflowed

    @property
    def skipped(self) -> list[SkipRecord]:
        return list(self._skipped)

    def record_skip(self, path: str, reason: str, *, count: int = 1) -> None:
        self._skipped.append(SkipRecord(path=path, reason=reason, count=count))

    def admit(self, candidates: Sequence[T], *, unit: str = "file") -> list[T]:
        """Apply the count-overflow policy to an ordered candidate list."""
        total = len(candidates)
        slots = max(self.max_items - self._items_accepted, 0)
        if total <= slots:
            return list(candidates)

        if self.policy is BudgetPolicy.warn:
            self._stopped = True
            self._count_overflowed = True
            self.record_skip(
                f"{total} {unit}(s)",
                f"matched {total} {plural(unit)}, exceeding the {self.max_items} {unit} limit "
                f"by {total - slots}; use more specific patterns",
                count=total,
            )
            logger.info("output_budget_count_exceeded", total=total, limit=self.max_items)
            return []

        if self.policy is BudgetPolicy.truncate:
            kept = list(candidates[:slots])
            reason = f"truncated to stay within {self.max_items} {unit} limit"
        else:
            stride = math.ceil(total / slots) if slots else total + 1
            kept = list(candidates[::stride])[:slots]
            reason = f"sampling to stay within {self.max_items} {unit} limit"

        omitted = total - len(kept)
        self.record_skip(f"{omitted} {unit}(s)", reason, count=omitted)
        logger.info(
            "output_budget_candidates_reduced",
            policy=str(self.policy),
            total=total,
            kept=len(kept),
        )
        return kept

    def check_size(self, path: str, size_bytes: int) -> bool:
        """Per-item size pre-filter, independent of policy."""
        if size_bytes <= self.max_item_bytes:
            return True
        self.record_skip(
            path,
            f"file size ({round(size_bytes / 1024)}KB) exceeds limit "
            f"({round(self.max_item_bytes / 1024)}KB)",
        )
        return False

    def _accept(self, path: str, content: str, tokens: int, *, truncated: bool = False) -> Accepted:
        self._items_accepted += 1
        self._tokens += tokens
        self._accepted.append(path)
        return Accepted(content=content, tokens=tokens, truncated=truncated)

    def try_accept(self, path: str, content: str, *, remaining: int = 1) -> BudgetDecision:
        """Account one item's token cost.

        remaining is the number of candidates left including this one; the
        warn policy records them all as one aggregate skip.
        """
        if self._stopped:
            return Rejected("output budget exhausted", stop=True)

        if self._items_accepted >= self.max_items:
            self._stopped = True
            self.record_skip(
                f"{remaining} remaining item(s)",
                f"would exceed the {self.max_items} item limit",
                count=remaining,
            )
            return Rejected("item limit reached", stop=True)

        cost = estimate_tokens(content)
        if self._tokens + cost <= self.max_aggregate_tokens:
            return self._accept(path, content, cost)

        limit_reason = f"would exceed token limit of {self.max_aggregate_tokens}"
        if self.policy is BudgetPolicy.sample:
            self.record_skip(path, "skipped to stay within token limit")
            return Rejected("skipped to stay within token limit")

        self._stopped = True
        if self.policy is BudgetPolicy.truncate:
            remaining_tokens = self.max_aggregate_tokens - self._tokens
            if remaining_tokens > MIN_TRUNCATE_TOKENS:
                prefix = content[: remaining_tokens * CHARS_PER_TOKEN - len(TRUNCATION_MARKER)]
                truncated = prefix + TRUNCATION_MARKER
                self.record_skip(path, "content truncated to fit token limit")
                return self._accept(path, truncated, estimate_tokens(truncated), truncated=True)

        self.record_skip(f"{remaining} remaining item(s)", limit_reason, count=remaining)
        return Rejected(limit_reason, stop=True)

    def try_accept_opaque(self, path: str, tokens: int = NON_TEXT_TOKENS) -> BudgetDecision:
        """Account a non-text part (image, PDF) at a flat token estimate."""
        if self._stopped:
            return Rejected("output budget exhausted", stop=True)
        if self._tokens + tokens > self.max_aggregate_tokens:
            self.record_skip(path, "would exceed token limit (non-text content)")
            return Rejected("would exceed token limit (non-text content)")
        return self._accept(path, "", tokens)

    def finalize(self) -> BudgetReport:
        return BudgetReport(
            accepted=list(self._accepted),
            skipped=list(self._skipped),
            tokens=self._tokens,
        )
