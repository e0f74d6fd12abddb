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

"""AD-001: Active Directory identifier consistency.

FAS rules and role assignments are keyed on SIDs, UPNs and domain names;
a malformed value silently grants nothing (or the wrong thing). This rule
checks the shape of SID and UPN literals, how SID-bearing parameters are
validated and documented, whether several domain parameters are checked
against each other, and whether AD lookups are wrapped in try/catch.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from fasguard.models.findings import Finding, Severity
from fasguard.models.settings import RuleSettings
from fasguard.rules.base import literal_value, make_finding, preview, rule_boundary
from fasguard.scanner.ast_walker import enclosing, find_all, is_inside_try, of_kind
from fasguard.scanner.ps_ast import (
    CommandInvocation,
    NodeKind,
    ParameterDeclaration,
    StringLiteral,
    SyntaxTree,
)

logger = logging.getLogger(__name__)

RULE_ID = "AD-001"
RULE_NAME = "ADConsistency"

STRICT_SID_RE = re.compile(r"^S-1-5-21-\d{10}-\d{10}-\d{10}-\d{4,5}$", re.IGNORECASE)

WELL_KNOWN_SID_RE = re.compile(
    r"^S-1-(?:"
    r"0-0|1-0|2-[01]|3-[0-5]"
    r"|5-(?:[1-9]|1[0-9]|20|113|114|1000)"
    r"|5-3[23]-\d{3}"
    r"|5-64-\d{1,2}"
    r"|5-80-(?:0|\d+(?:-\d+){4})"
    r"|5-21-\d{10}-\d{10}-\d{10}-5\d\d"
    r"|15-2-\d+"
    r"|16-\d+"
    r"|18-[1-6]"
    r")$",
    re.IGNORECASE,
)

UPN_RE = re.compile(r"^[^@\s]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
# Only values made of account-name characters are treated as UPN attempts.
UPN_CANDIDATE_RE = re.compile(r"^[\w.\-]+@[\w.\-]+$")

DOMAIN_PARAMETER_RE = re.compile(r"(?:User|Computer|FAS|CA|DC)(?:DomainName|Domain)", re.IGNORECASE)
DOMAIN_CHECK_RE = re.compile(r"\$\w*domain\w*\s+-[ic]?(?:eq|ne)\s+\$\w*domain", re.IGNORECASE)

GROUP_SID_PARAMETER_RE = re.compile(r"groupsid|(?:fas|security)\w*group\w*sid", re.IGNORECASE)

AD_CMDLET_RE = re.compile(
    r"^(?:get|set|new|remove)-ad(?:user|group|groupmember|domain|domaincontroller|forest|"
    r"computer|object|organizationalunit)$",
    re.IGNORECASE,
)


def _sid_literals(tree: SyntaxTree) -> list[tuple[StringLiteral, str]]:
    found = []
    for node in find_all(tree, of_kind(NodeKind.STRING_LITERAL)):
        value = literal_value(node)
        if value is None or "$" in value:
            continue
        value = value.strip()
        if value.upper().startswith("S-1-"):
            found.append((node, value))
    return found


def _is_valid_sid(value: str) -> bool:
    return bool(STRICT_SID_RE.match(value) or WELL_KNOWN_SID_RE.match(value))


def _has_sid_pattern(parameter: ParameterDeclaration) -> bool:
    attribute = parameter.attribute("ValidatePattern")
    return attribute is not None and "s-1-" in attribute.arguments_text.lower()


def _default_owner(node: StringLiteral) -> Optional[ParameterDeclaration]:
    """The parameter whose default value contains ``node``, if any."""
    parameter = enclosing(node, NodeKind.PARAMETER_DECLARATION)
    if not isinstance(parameter, ParameterDeclaration) or parameter.default is None:
        return None
    if parameter.default.extent.contains(node.extent):
        return parameter
    return None


def _check_sids(tree: SyntaxTree) -> list[Finding]:
    findings: list[Finding] = []
    literals = _sid_literals(tree)
    for node, value in literals:
        if not _is_valid_sid(value):
            findings.append(
                make_finding(
                    RULE_ID,
                    RULE_NAME,
                    Severity.WARNING,
                    f"Invalid SID format '{preview(value)}'; expected S-1-5-21-<domain>-<RID> or a well-known SID",
                    node,
                    tree,
                )
            )
    for node, value in literals:
        parameter = _default_owner(node)
        if parameter is None or _has_sid_pattern(parameter):
            continue
        findings.append(
            make_finding(
                RULE_ID,
                RULE_NAME,
                Severity.INFORMATION,
                f"Parameter '${parameter.name}' defaults to a hardcoded SID without a [ValidatePattern] for SIDs",
                node,
                tree,
            )
        )
    return findings


def _check_domains(tree: SyntaxTree) -> list[Finding]:
    parameters = [
        node
        for node in find_all(tree, of_kind(NodeKind.PARAMETER_DECLARATION))
        if DOMAIN_PARAMETER_RE.search(node.name)
    ]
    names = {p.name.lower() for p in parameters}
    if len(names) < 2:
        return []
    if DOMAIN_CHECK_RE.search(tree.source):
        return []
    for parameter in parameters:
        attribute = parameter.attribute("ValidateScript")
        if attribute is not None and "domain" in attribute.arguments_text.lower():
            return []
    listed = ", ".join(f"${p.name}" for p in parameters)
    return [
        make_finding(
            RULE_ID,
            RULE_NAME,
            Severity.INFORMATION,
            f"Domain parameters {listed} are never compared; a cross-domain mismatch would go unnoticed",
            parameters[0],
            tree,
        )
    ]


def _check_upns(tree: SyntaxTree) -> list[Finding]:
    findings: list[Finding] = []
    for node in find_all(tree, of_kind(NodeKind.STRING_LITERAL)):
        value = literal_value(node)
        if value is None or "@" not in value or "$" in value:
            continue
        if not UPN_CANDIDATE_RE.match(value):
            continue
        if not UPN_RE.match(value):
            findings.append(
                make_finding(
                    RULE_ID,
                    RULE_NAME,
                    Severity.INFORMATION,
                    f"Malformed UPN '{preview(value)}'; expected user@domain.tld",
                    node,
                    tree,
                )
            )
    return findings


def _check_group_sid_parameters(tree: SyntaxTree) -> list[Finding]:
    findings: list[Finding] = []
    for node in find_all(tree, of_kind(NodeKind.PARAMETER_DECLARATION)):
        if not GROUP_SID_PARAMETER_RE.search(node.name):
            continue
        if not node.has_attribute("ValidatePattern"):
            findings.append(
                make_finding(
                    RULE_ID,
                    RULE_NAME,
                    Severity.WARNING,
                    f"Group SID parameter '${node.name}' has no [ValidatePattern]; malformed SIDs are accepted",
                    node,
                    tree,
                )
            )
        if not node.documentation:
            findings.append(
                make_finding(
                    RULE_ID,
                    RULE_NAME,
                    Severity.INFORMATION,
                    f"Group SID parameter '${node.name}' is undocumented; say which FAS group it identifies",
                    node,
                    tree,
                )
            )
    return findings


def _check_ad_calls(tree: SyntaxTree) -> list[Finding]:
    findings: list[Finding] = []
    ad_calls = find_all(tree, lambda n: isinstance(n, CommandInvocation) and bool(AD_CMDLET_RE.match(n.name)))
    for node in ad_calls:
        if is_inside_try(node):
            continue
        findings.append(
            make_finding(
                RULE_ID,
                RULE_NAME,
                Severity.INFORMATION,
                f"{node.name} is called outside try/catch; lookup failures will stop or mislead the script",
                node,
                tree,
            )
        )
    return findings


@rule_boundary(RULE_ID)
def check_ad_consistency(tree: SyntaxTree, settings: Optional[RuleSettings] = None) -> list[Finding]:
    findings: list[Finding] = []
    findings.extend(_check_sids(tree))
    findings.extend(_check_domains(tree))
    findings.extend(_check_upns(tree))
    findings.extend(_check_group_sid_parameters(tree))
    findings.extend(_check_ad_calls(tree))
    logger.debug("%s: %d finding(s) in %s", RULE_ID, len(findings), tree.path or "<string>")
    return findings
