"""Map request paths and methods to rate limit tiers."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from review_api.ratelimit.tiers import DEFAULT_TIER, PolicyTier

logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
READ_METHODS = frozenset({"GET", "HEAD"})


@dataclass(frozen=True)
class RouteRule:
    """One routing table entry.

    Attributes:
        prefix: Path prefix the rule applies to.
        tier: Tier assigned when the rule matches.
        methods: Upper-case methods the rule is restricted to (None = any).
    """

    prefix: str
    tier: PolicyTier
    methods: frozenset[str] | None = None

    def matches(self, path: str, method: str) -> bool:
        if not path.startswith(self.prefix):
            return False
        return self.methods is None or method in self.methods

    @property
    def specificity(self) -> tuple[int, int]:
        return len(self.prefix), 0 if self.methods is None else 1


DEFAULT_RULES: tuple[RouteRule, ...] = (
    RouteRule("/api/auth/", PolicyTier.AUTH),
    RouteRule("/api/login", PolicyTier.AUTH),
    RouteRule("/api/register", PolicyTier.AUTH),
    RouteRule("/api/admin/", PolicyTier.ADMIN),
    RouteRule("/api/seed", PolicyTier.SEED),
    RouteRule("/api/reviews/google", PolicyTier.EXTERNAL),
    RouteRule("/api/reviews/hostaway", PolicyTier.EXTERNAL),
    RouteRule("/api/", PolicyTier.MUTATION, MUTATING_METHODS),
    RouteRule("/api/", PolicyTier.DATA, READ_METHODS),
)


class RouteClassifier:
    """Resolve the tier for a path/method pair by most specific prefix.

    The longest matching prefix wins; on equal length a method-restricted rule
    beats an any-method rule. Unmatched requests get the default tier.
    """

    def __init__(
        self,
        rules: Iterable[RouteRule] = DEFAULT_RULES,
        *,
        default: PolicyTier = DEFAULT_TIER,
    ) -> None:
        # Sorted once so the first match is the most specific one
        self._rules = tuple(sorted(rules, key=lambda r: r.specificity, reverse=True))
        self._default = default

    @property
    def rules(self) -> tuple[RouteRule, ...]:
        return self._rules

    def classify(self, path: str, method: str) -> PolicyTier:
        """Return the tier for a request.

        Args:
            path: URL path (no query string).
            method: HTTP method, any case.

        Returns:
            The matching rule's tier or the default tier.
        """

        method = method.upper()
        for rule in self._rules:
            if rule.matches(path, method):
                return rule.tier

        logger.debug(
            "rate_limit.unmatched_route",
            extra={"path": path, "method": method, "tier": self._default.value},
        )
        return self._default
