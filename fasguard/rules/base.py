# fasguard - PowerShell credential and identity linter for Citrix FAS automation
# Copyright (C) 2026 fasguard Project Contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Shared plumbing for rule functions: the failure boundary and finding builder."""

from __future__ import annotations

import functools
import logging
from typing import Callable, Optional

from fasguard.models.findings import Finding, Severity
from fasguard.models.settings import RuleSettings
from fasguard.scanner.ps_ast import Node, StringLiteral, SyntaxTree

logger = logging.getLogger(__name__)

RuleFunction = Callable[..., list[Finding]]


def rule_boundary(rule_id: str) -> Callable[[RuleFunction], RuleFunction]:
    """Contain unexpected failures inside one rule.

    The wrapped rule returns ``[]`` instead of raising; the failure is logged
    and, when the caller passes an ``errors`` list, the rule id is appended
    to it. Other rules run regardless.
    """

    def decorator(func: RuleFunction) -> RuleFunction:
        @functools.wraps(func)
        def wrapper(
            tree: SyntaxTree,
            settings: Optional[RuleSettings] = None,
            *,
            errors: Optional[list[str]] = None,
        ) -> list[Finding]:
            try:
                return func(tree, settings)
            except Exception:
                logger.exception("Rule %s failed on %s; skipping it", rule_id, tree.path or "<string>")
                if errors is not None:
                    errors.append(rule_id)
                return []

        wrapper.rule_id = rule_id
        return wrapper

    return decorator


def make_finding(
    rule_id: str,
    rule_name: str,
    severity: Severity,
    message: str,
    node: Node,
    tree: SyntaxTree,
) -> Finding:
    return Finding(
        rule_id=rule_id,
        rule_name=rule_name,
        severity=severity,
        message=message,
        source_range=node.extent,
        script_path=tree.path,
    )


def literal_value(node: Optional[Node]) -> Optional[str]:
    """Value of a string literal with no variable expansion, else None."""
    if isinstance(node, StringLiteral) and not node.has_variables:
        return node.value
    return None


def preview(text: str, limit: int = 40) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."
