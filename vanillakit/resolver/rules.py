"""Library rule evaluation.

Rules are evaluated in order; the last matching ``allow`` enables the
library and any matching ``disallow`` excludes it immediately.  A rule
matches when its ``os`` and ``features`` constraints both hold.
"""

from __future__ import annotations

import platform
import re
import sys
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vanillakit.models.manifest import OsRule, Rule


def normalize_os_name(system: str) -> str:
    """Map a ``platform.system()`` value to the manifest's os names."""
    system = system.lower()
    if system == "darwin":
        return "osx"
    if system.startswith("win"):
        return "windows"
    return system


def normalize_arch(machine: str) -> str:
    machine = machine.lower()
    if machine in ("amd64", "x86_64", "i386", "i686", "x86"):
        return "x86"
    if machine in ("arm64", "aarch64", "armv8"):
        return "arm64"
    return machine


@dataclass(frozen=True)
class RuleContext:
    """The environment rules are evaluated against."""

    os_name: str
    os_version: str = ""
    arch: str = "x86"
    bits: str = "64"
    features: dict[str, bool] = field(default_factory=dict)

    @classmethod
    def current(cls, features: dict[str, bool] | None = None) -> RuleContext:
        """Context describing the running interpreter's platform."""
        return cls(
            os_name=normalize_os_name(platform.system()),
            os_version=platform.version(),
            arch=normalize_arch(platform.machine()),
            bits="64" if sys.maxsize > 2**32 else "32",
            features=dict(features or {}),
        )


def os_matches(rule_os: OsRule, context: RuleContext) -> bool:
    if rule_os.name is not None and rule_os.name != context.os_name:
        return False
    if rule_os.arch is not None and rule_os.arch != context.arch:
        return False
    if rule_os.version is not None and re.search(rule_os.version, context.os_version) is None:
        return False
    return True


def rules_allow(rules: list[Rule], context: RuleContext) -> bool:
    """Whether *rules* allow the associated library under *context*."""
    allowed = False
    for rule in rules:
        if rule.os is not None and not os_matches(rule.os, context):
            continue
        if rule.features is not None and any(
            context.features.get(name, False) != expected
            for name, expected in rule.features.items()
        ):
            continue
        if rule.action == "disallow":
            return False
        if rule.action == "allow":
            allowed = True
    return allowed
