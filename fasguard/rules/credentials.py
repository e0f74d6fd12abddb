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

"""CRED-001: hardcoded credentials.

Checks, in order:
- assignments whose text matches a credential risk pattern
  (``$password = "..."``, tokens, API keys, connection strings, ...)
- hashtable entries read the same way, so ``@{ Password = "..." }`` (and
  splatted parameter tables) count as assignments to ``$Password``
- standalone string literals matching a risk pattern (bearer tokens,
  connection strings, URLs with embedded user:password)
- literals handed to ``ConvertTo-SecureString``

Literals inside an assignment that was already reported (or whitelisted)
are not reported again.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from fasguard.models.findings import Finding, Severity, SourceRange
from fasguard.models.settings import RuleSettings
from fasguard.rules.base import literal_value, make_finding, preview, rule_boundary
from fasguard.rules.catalog import is_whitelisted, match_risk
from fasguard.scanner.ast_walker import command_named, find_all, hashtable_entries, of_kind, upstream_elements
from fasguard.scanner.ps_ast import Assignment, CommandInvocation, Node, NodeKind, StringLiteral, SyntaxTree

logger = logging.getLogger(__name__)

RULE_ID = "CRED-001"
RULE_NAME = "HardcodedCredential"

MIN_SECRET_LENGTH = 8

# Characters a hashtable key may hold that a variable name may not.
KEY_CHARS_RE = re.compile(r"[^\w:]")


def _covered(extent: SourceRange, handled: list[SourceRange]) -> bool:
    return any(outer.contains(extent) for outer in handled)


def _is_candidate_value(value: Optional[str]) -> bool:
    return value is not None and len(value.strip()) >= MIN_SECRET_LENGTH


def _check_assignment(
    node: Assignment, tree: SyntaxTree, settings: Optional[RuleSettings]
) -> tuple[Optional[Finding], bool]:
    """Returns (finding, handled); ``handled`` marks the range as settled."""
    if not isinstance(node.value, StringLiteral):
        return None, False
    if not _is_candidate_value(literal_value(node.value)):
        return None, True
    if is_whitelisted(node.text, settings):
        return None, True
    pattern = match_risk(node.text)
    if pattern is None:
        return None, False
    target = f"${node.variable_name}" if node.variable_name else node.target_text
    return make_finding(RULE_ID, RULE_NAME, Severity.ERROR, pattern.message.format(target=target), node, tree), True


def _check_hashtable_entry(
    key: Node, value: Node, tree: SyntaxTree, settings: Optional[RuleSettings]
) -> tuple[Optional[Finding], bool]:
    """Like ``_check_assignment``, reading ``@{ Key = "value" }`` as ``$Key = "value"``."""
    name = literal_value(key)
    if not name or not isinstance(value, StringLiteral):
        return None, False
    if not _is_candidate_value(literal_value(value)):
        return None, True
    candidate = f"${KEY_CHARS_RE.sub('_', name)} = {value.text}"
    if is_whitelisted(candidate, settings):
        return None, True
    pattern = match_risk(candidate)
    if pattern is None:
        return None, False
    message = pattern.message.format(target=f"hashtable key '{name}'")
    return make_finding(RULE_ID, RULE_NAME, Severity.ERROR, message, value, tree), True


def _check_literal(node: StringLiteral, tree: SyntaxTree, settings: Optional[RuleSettings]) -> Optional[Finding]:
    if not _is_candidate_value(literal_value(node)):
        return None
    if is_whitelisted(node.text, settings):
        return None
    pattern = match_risk(node.text)
    if pattern is None:
        return None
    message = pattern.message.format(target=f"string literal '{preview(node.value)}'")
    return make_finding(RULE_ID, RULE_NAME, Severity.ERROR, message, node, tree)


def _secure_string_input(command: CommandInvocation):
    argument = command.argument(("String",), 0)
    if argument is not None:
        return argument
    upstream = upstream_elements(command)
    if upstream and isinstance(upstream[-1], StringLiteral):
        return upstream[-1]
    return None


def _check_secure_string(
    command: CommandInvocation, tree: SyntaxTree, settings: Optional[RuleSettings], handled: list[SourceRange]
) -> Optional[Finding]:
    argument = _secure_string_input(command)
    value = literal_value(argument)
    if not _is_candidate_value(value):
        return None
    if _covered(argument.extent, handled) or is_whitelisted(argument.text, settings):
        return None
    return make_finding(
        RULE_ID,
        RULE_NAME,
        Severity.ERROR,
        "Literal secret passed to ConvertTo-SecureString; the plain-text value is stored in the script",
        command,
        tree,
    )


@rule_boundary(RULE_ID)
def check_hardcoded_credentials(tree: SyntaxTree, settings: Optional[RuleSettings] = None) -> list[Finding]:
    findings: list[Finding] = []
    handled: list[SourceRange] = []

    for node in find_all(tree, of_kind(NodeKind.ASSIGNMENT)):
        finding, settled = _check_assignment(node, tree, settings)
        if settled:
            handled.append(node.extent)
        if finding is not None:
            findings.append(finding)

    for node in find_all(tree, of_kind(NodeKind.EXPRESSION)):
        for key, value in hashtable_entries(node):
            if _covered(value.extent, handled):
                continue
            finding, settled = _check_hashtable_entry(key, value, tree, settings)
            if settled:
                handled.append(value.extent)
            if finding is not None:
                findings.append(finding)

    for node in find_all(tree, of_kind(NodeKind.STRING_LITERAL)):
        if _covered(node.extent, handled):
            continue
        finding = _check_literal(node, tree, settings)
        if finding is not None:
            findings.append(finding)
            handled.append(node.extent)

    for node in find_all(tree, command_named("ConvertTo-SecureString")):
        finding = _check_secure_string(node, tree, settings, handled)
        if finding is not None:
            findings.append(finding)

    logger.debug("%s: %d finding(s) in %s", RULE_ID, len(findings), tree.path or "<string>")
    return findings
