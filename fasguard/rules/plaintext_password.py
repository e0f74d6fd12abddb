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

"""CRED-002: secrets handled as plain text.

Three independent checks:
1. secret-looking parameters declared as [string] or left untyped
2. ``ConvertTo-SecureString -AsPlainText`` on input that is not read
   interactively with Read-Host
3. PSCredential objects built from a literal or never-secured password
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from fasguard.models.findings import Finding, Severity
from fasguard.models.settings import RuleSettings
from fasguard.rules.base import literal_value, make_finding, rule_boundary
from fasguard.rules.catalog import is_whitelisted
from fasguard.scanner.ast_walker import (
    assignments_by_variable,
    command_named,
    find_all,
    is_inside_try,
    member_named,
    of_kind,
    upstream_elements,
    variables_in,
)
from fasguard.scanner.ps_ast import (
    Assignment,
    CommandInvocation,
    Expression,
    MemberInvocation,
    Node,
    NodeKind,
    ParameterDeclaration,
    StringLiteral,
    SyntaxTree,
    Variable,
)

logger = logging.getLogger(__name__)

RULE_ID = "CRED-002"
RULE_NAME = "PlainTextPassword"

SECRET_PARAMETER_RE = re.compile(r"password|pwd|pass|secret|key|credential|cred", re.IGNORECASE)
CREDENTIAL_PARAMETER_RE = re.compile(r"credential|cred", re.IGNORECASE)

# Names that contain a secret-ish word but carry no secret.
NON_SECRET_PARAMETER_RE = re.compile(
    r"^(?:passthru|key(?:length|size|usage|spec|algorithm)|bypass\w*|\w*keyvaultname)$"
    r"|template|keyword|thumbprint",
    re.IGNORECASE,
)

STRING_TYPE_RE = re.compile(r"^(?:system\.)?string(?:\[\])?$", re.IGNORECASE)
SECURE_STRING_TYPE_RE = re.compile(r"^(?:system\.security\.)?securestring$", re.IGNORECASE)
PSCREDENTIAL_TYPE_RE = re.compile(r"^(?:system\.management\.automation\.)?pscredential$", re.IGNORECASE)

# Assignment values that produce a SecureString (or a credential holding one).
SECURED_VALUE_RE = re.compile(
    r"convertto-securestring|read-host\b.*-assecurestring|get-credential|\.password\b",
    re.IGNORECASE | re.DOTALL,
)


# ── Parameter declarations ──


def _check_parameter(
    node: ParameterDeclaration, tree: SyntaxTree, settings: Optional[RuleSettings]
) -> Optional[Finding]:
    name = node.name
    if not SECRET_PARAMETER_RE.search(name) or NON_SECRET_PARAMETER_RE.search(name):
        return None
    if node.type_name is not None and not STRING_TYPE_RE.match(node.type_name.replace(" ", "")):
        return None
    if node.default is not None and is_whitelisted(node.default.text, settings):
        return None
    declared = f"declared as [{node.type_name}]" if node.type_name else "untyped"
    if CREDENTIAL_PARAMETER_RE.search(name):
        advice = "use [PSCredential] instead"
    else:
        advice = "use [SecureString] instead"
    message = f"Parameter '${name}' holds a secret but is {declared}; {advice}"
    return make_finding(RULE_ID, RULE_NAME, Severity.ERROR, message, node, tree)


# ── ConvertTo-SecureString -AsPlainText ──


def _read_from_host(node: Optional[Node], assignments: dict[str, list[Assignment]]) -> bool:
    if node is None:
        return False
    if "read-host" in node.lower_text:
        return True
    for variable in variables_in(node):
        for assignment in assignments.get(variable.name.lower(), []):
            if "read-host" in assignment.value.lower_text:
                return True
    return False


def _check_as_plain_text(
    command: CommandInvocation, tree: SyntaxTree, assignments: dict[str, list[Assignment]]
) -> Optional[Finding]:
    if not command.has_parameter("AsPlainText"):
        return None
    source = command.argument(("String",), 0)
    if _read_from_host(source, assignments):
        return None
    if any(_read_from_host(element, assignments) for element in upstream_elements(command)):
        return None
    if command.has_parameter("Force") and not is_inside_try(command):
        severity = Severity.ERROR
        message = (
            "ConvertTo-SecureString -AsPlainText -Force converts a plain-text value that is "
            "not read interactively, outside any try/catch"
        )
    else:
        severity = Severity.WARNING
        message = "ConvertTo-SecureString -AsPlainText converts a plain-text value that is not read interactively"
    return make_finding(RULE_ID, RULE_NAME, severity, message, command, tree)


# ── PSCredential construction ──


def _argument_items(node: Optional[Node]) -> list[Node]:
    """Flatten ``($a, $b)``, ``@($a, $b)`` and ``$a, $b`` into their items."""
    while (
        isinstance(node, Expression)
        and node.expression_type in ("paren", "subexpression", "array_subexpression")
        and len(node.children) == 1
    ):
        node = node.children[0]
    if node is None:
        return []
    if isinstance(node, Expression) and node.expression_type == "array":
        return list(node.children)
    return [node]


def _type_name_of(node: Optional[Node]) -> Optional[str]:
    if isinstance(node, StringLiteral):
        return node.value
    if isinstance(node, Expression) and node.expression_type == "type_literal":
        return node.type_name
    return None


def _new_object_password(command: CommandInvocation) -> tuple[bool, Optional[Node]]:
    type_name = _type_name_of(command.argument(("TypeName",), 0))
    if type_name is None or not PSCREDENTIAL_TYPE_RE.match(type_name.strip("[]")):
        return False, None
    arguments = command.parameter_argument("ArgumentList")
    if arguments is None:
        # Positional arguments after the type name.
        position = 0 if command.has_parameter("TypeName") else 1
        rest = command.positional_arguments[position:]
        items = _argument_items(rest[0]) if len(rest) == 1 else rest
    else:
        items = _argument_items(arguments)
    return True, items[1] if len(items) > 1 else None


def _static_new_password(member: MemberInvocation) -> tuple[bool, Optional[Node]]:
    if not member.is_static:
        return False, None
    type_name = _type_name_of(member.target)
    if type_name is None or not PSCREDENTIAL_TYPE_RE.match(type_name):
        return False, None
    return True, member.arguments[1] if len(member.arguments) > 1 else None


def _secure_parameters(tree: SyntaxTree) -> set[str]:
    return {
        node.name.lower()
        for node in find_all(tree, of_kind(NodeKind.PARAMETER_DECLARATION))
        if node.type_name and SECURE_STRING_TYPE_RE.match(node.type_name)
    }


def _check_credential_password(
    construction: Node,
    password: Optional[Node],
    tree: SyntaxTree,
    settings: Optional[RuleSettings],
    assignments: dict[str, list[Assignment]],
    secure_parameters: set[str],
) -> Optional[Finding]:
    if password is None:
        return None
    value = literal_value(password)
    if value is not None:
        if not value or is_whitelisted(password.text, settings):
            return None
        return make_finding(
            RULE_ID,
            RULE_NAME,
            Severity.ERROR,
            "PSCredential constructed with a literal password",
            construction,
            tree,
        )
    if isinstance(password, Variable):
        name = password.name.lower()
        if name in secure_parameters:
            return None
        if any(SECURED_VALUE_RE.search(a.value.text) for a in assignments.get(name, [])):
            return None
        return make_finding(
            RULE_ID,
            RULE_NAME,
            Severity.WARNING,
            f"PSCredential password '${password.qualified_name}' is never converted to a SecureString",
            construction,
            tree,
        )
    return None


@rule_boundary(RULE_ID)
def check_plaintext_passwords(tree: SyntaxTree, settings: Optional[RuleSettings] = None) -> list[Finding]:
    findings: list[Finding] = []

    for node in find_all(tree, of_kind(NodeKind.PARAMETER_DECLARATION)):
        finding = _check_parameter(node, tree, settings)
        if finding is not None:
            findings.append(finding)

    assignments = assignments_by_variable(tree)
    for node in find_all(tree, command_named("ConvertTo-SecureString")):
        finding = _check_as_plain_text(node, tree, assignments)
        if finding is not None:
            findings.append(finding)

    secure_parameters = _secure_parameters(tree)
    constructions: list[tuple[Node, Optional[Node]]] = []
    for node in find_all(tree, command_named("New-Object")):
        matched, password = _new_object_password(node)
        if matched:
            constructions.append((node, password))
    for node in find_all(tree, member_named("new")):
        matched, password = _static_new_password(node)
        if matched:
            constructions.append((node, password))
    constructions.sort(key=lambda pair: pair[0].extent.start_offset)
    for construction, password in constructions:
        finding = _check_credential_password(
            construction, password, tree, settings, assignments, secure_parameters
        )
        if finding is not None:
            findings.append(finding)

    logger.debug("%s: %d finding(s) in %s", RULE_ID, len(findings), tree.path or "<string>")
    return findings
