from __future__ import annotations

from functools import lru_cache
import re
from typing import Any, Iterable

from quotacore.domain.models import Policy, Resource, Subject


_MISSING = object()


@lru_cache(maxsize=1024)
def _compile_resource_pattern(pattern: str) -> re.Pattern[str]:
    # '*' matches any substring; every other character is literal.
    parts = (re.escape(part) for part in pattern.split("*"))
    return re.compile(".*".join(parts), re.DOTALL)


def matches_resource_pattern(pattern: str, value: str) -> bool:
    return _compile_resource_pattern(pattern).fullmatch(value) is not None


def _strict_equals(actual: Any, expected: Any) -> bool:
    # Booleans never equal numbers and containers never match; ints and floats compare by value.
    if isinstance(actual, bool) or isinstance(expected, bool):
        return type(actual) is type(expected) and actual == expected
    if isinstance(actual, (dict, list)) or isinstance(expected, (dict, list)):
        return False
    return actual == expected


def matches_subject_filter(subject_filter: dict[str, Any] | None, subject: Subject) -> bool:
    # Every declared key must equal the subject context value; no filter means no constraint.
    if not subject_filter:
        return True
    context: dict[str, Any] = {"id": subject.id, "type": subject.type, **(subject.attributes or {})}
    return all(_strict_equals(context.get(key, _MISSING), value) for key, value in subject_filter.items())


def policy_sort_key(policy: Policy) -> tuple[int, str]:
    # Highest priority first; ties go to the lexicographically smallest id.
    return (-policy.priority, policy.policy_id)


def select_policy(
    policies: Iterable[Policy],
    *,
    tenant_id: str,
    subject: Subject,
    resource: Resource,
) -> Policy | None:
    candidates = [
        policy
        for policy in policies
        if policy.tenant_id == tenant_id
        and policy.status == "ACTIVE"
        and policy.scope.subject_type == subject.type
        and policy.scope.resource_type == resource.type
        and matches_resource_pattern(policy.match.resource_pattern, resource.name)
        and matches_subject_filter(policy.match.subject_filter, subject)
    ]
    if not candidates:
        return None
    return min(candidates, key=policy_sort_key)
