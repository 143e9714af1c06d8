"""Path rule matching.

Patterns are either exact paths or contain one or more "*" wildcards.
A "*" matches any run of characters, including "/", so "/api/*" covers
"/api/users" as well as "/api/users/profile". All other characters are
literal.
"""

import re
from functools import lru_cache

from quotagate.app.services.rate_limit.models import PolicySet, Rule

WILDCARD = "*"


@lru_cache(maxsize=1024)
def _compile_pattern(pattern: str) -> re.Pattern:
    """Translate a wildcard pattern into an anchored regex."""
    parts = (re.escape(part) for part in pattern.split(WILDCARD))
    return re.compile("".join(["^", ".*".join(parts), "$"]), re.DOTALL)


def path_matches(pattern: str, path: str) -> bool:
    """Check whether a request path matches a rule pattern.

    Args:
        pattern: Rule pattern, exact or containing "*"
        path: Request path without query string

    Returns:
        True on exact equality or wildcard match
    """
    if pattern == path:
        return True
    if WILDCARD in pattern:
        return _compile_pattern(pattern).match(path) is not None
    return False


def find_matching_rule(rules: list[Rule], path: str) -> Rule | None:
    """Return the first rule whose pattern matches, in configured order."""
    for rule in rules:
        if path_matches(rule.pattern, path):
            return rule
    return None


def match_rule(policy: PolicySet, path: str) -> Rule | None:
    """Select the rule that governs a path.

    Falls back to the policy's default rule; None means the path is not
    rate limited.
    """
    rule = find_matching_rule(policy.rules, path)
    if rule is None:
        return policy.default_rule
    return rule
