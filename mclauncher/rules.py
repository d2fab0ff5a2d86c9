"""
Rule evaluation. A rule list gates a library or an argument: each rule
contributes "conditions met" (allow) or "conditions not met" (disallow) and
the list applies only when every contribution holds.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from .platforms import get_arch_name, get_os_name, get_os_version, normalize_os_name

log = logging.getLogger(__name__)

ALLOW = 'allow'
DISALLOW = 'disallow'


@dataclass(frozen=True)
class OsConstraint:
    name: Optional[str] = None
    arch: Optional[str] = None
    version: Optional[str] = None


@dataclass(frozen=True)
class Rule:
    action: str = ALLOW
    os: Optional[OsConstraint] = None
    features: Mapping[str, bool] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Rule':
        os_data = data.get('os')
        os_constraint = None
        if isinstance(os_data, dict):
            os_constraint = OsConstraint(
                name=os_data.get('name'),
                arch=os_data.get('arch'),
                version=os_data.get('version'),
            )
        features = data.get('features')
        return cls(
            action=data.get('action', ALLOW),
            os=os_constraint,
            features=dict(features) if isinstance(features, dict) else {},
        )

    @classmethod
    def coerce(cls, rule: Union['Rule', Dict[str, Any]]) -> 'Rule':
        return rule if isinstance(rule, Rule) else cls.from_dict(rule)


@dataclass(frozen=True)
class RuleContext:
    """
    The environment rules are evaluated against. A None field is a wildcard:
    any constraint on it is considered met.
    """
    os_name: Optional[str]
    arch: Optional[str] = None
    os_version: Optional[str] = None
    features: Optional[Mapping[str, bool]] = field(default_factory=dict)

    @classmethod
    def current(cls, features: Optional[Mapping[str, bool]] = None) -> 'RuleContext':
        """Context of the machine we are running on."""
        return cls(
            os_name=get_os_name(),
            arch=get_arch_name(),
            os_version=get_os_version(),
            features=dict(features or {}),
        )

    @classmethod
    def permissive(cls, os_name: Optional[str] = None) -> 'RuleContext':
        """
        Download-time context: only the OS name is pinned, so every
        architecture variant and feature-gated entry of this OS is kept.
        """
        return cls(os_name=os_name or get_os_name(), arch=None, os_version=None, features=None)


def os_matches(constraint: Optional[OsConstraint], context: RuleContext) -> bool:
    if constraint is None:
        return True
    if constraint.name and context.os_name is not None:
        if normalize_os_name(constraint.name) != normalize_os_name(context.os_name):
            return False
    if constraint.arch and context.arch is not None:
        if constraint.arch != context.arch:
            return False
    if constraint.version and context.os_version is not None:
        try:
            if not re.search(constraint.version, context.os_version):
                return False
        except re.error:
            if constraint.version != context.os_version:
                return False
    return True


def features_match(required: Mapping[str, bool], context: RuleContext) -> bool:
    if not required or context.features is None:
        return True
    for flag, expected in required.items():
        if bool(context.features.get(flag, False)) != bool(expected):
            return False
    return True


def check_rule(rule: Union[Rule, Dict[str, Any]], context: RuleContext) -> bool:
    """Returns this single rule's contribution to the overall predicate."""
    rule = Rule.coerce(rule)
    satisfied = os_matches(rule.os, context) and features_match(rule.features, context)
    if rule.action == ALLOW:
        return satisfied
    elif rule.action == DISALLOW:
        return not satisfied
    log.warning(f"Unknown rule action: {rule.action}. Treating it as 'allow'.")
    return satisfied


def evaluate(rules: Optional[Iterable[Union[Rule, Dict[str, Any]]]], context: RuleContext) -> bool:
    """True when the item gated by ``rules`` applies in ``context``. No rules always applies."""
    if not rules:
        return True
    return all(check_rule(rule, context) for rule in rules)
