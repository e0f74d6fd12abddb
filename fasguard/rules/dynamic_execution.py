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

"""EXEC-001: dynamic code execution.

Independent passes; a single line can produce more than one finding:
1. Invoke-Expression / iex (escalated for variable or downloaded input)
2. script blocks created from non-literal text
3. .Invoke() on a script block built at run time
4. Add-Type compiling a type definition held in a variable
5. Invoke-Command / Start-Job with a dynamically built script block
6. pipelines that download content and pipe it into Invoke-Expression
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from fasguard.models.findings import Finding, Severity
from fasguard.models.settings import RuleSettings
from fasguard.rules.base import literal_value, make_finding, rule_boundary
from fasguard.scanner.ast_walker import (
    assignments_by_variable,
    command_named,
    find_all,
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
    Pipeline,
    ScriptBlock,
    StringLiteral,
    SyntaxTree,
    Variable,
)

logger = logging.getLogger(__name__)

RULE_ID = "EXEC-001"
RULE_NAME = "DynamicExecution"

INVOKE_EXPRESSION = ("Invoke-Expression", "iex")

NETWORK_FETCH_RE = re.compile(
    r"\b(?:invoke-webrequest|iwr|invoke-restmethod|irm|curl|wget|start-bitstransfer)\b"
    r"|\.download(?:string|file|data)\s*\("
    r"|net\.webclient",
    re.IGNORECASE,
)

SCRIPTBLOCK_BUILD_RE = re.compile(
    r"\[(?:system\.management\.automation\.)?scriptblock\]\s*::\s*create\b"
    r"|\.newscriptblock\s*\("
    r"|::\s*parse(?:input|file)\b"
    r"|\.getscriptblock\s*\(",
    re.IGNORECASE,
)

SCRIPTBLOCK_TYPE_RE = re.compile(r"^(?:system\.management\.automation\.)?scriptblock$", re.IGNORECASE)


def _references_variable(node: Optional[Node]) -> bool:
    if node is None:
        return False
    if isinstance(node, StringLiteral):
        return node.has_variables
    return bool(variables_in(node)) or any(
        isinstance(n, StringLiteral) and n.has_variables for n in node.walk()
    )


def _fetches(node: Optional[Node], assignments: dict[str, list[Assignment]]) -> bool:
    """True when ``node`` downloads content, directly or through a variable."""
    if node is None:
        return False
    if NETWORK_FETCH_RE.search(node.text):
        return True
    for variable in variables_in(node):
        for assignment in assignments.get(variable.name.lower(), []):
            if NETWORK_FETCH_RE.search(assignment.value.text):
                return True
    return False


def _unwrap(node: Optional[Node]) -> Optional[Node]:
    while isinstance(node, Expression) and node.expression_type == "paren" and len(node.children) == 1:
        node = node.children[0]
    return node


def _builds_script_block(node: Optional[Node], assignments: dict[str, list[Assignment]]) -> bool:
    node = _unwrap(node)
    if node is None or isinstance(node, ScriptBlock):
        return False
    if SCRIPTBLOCK_BUILD_RE.search(node.text):
        return True
    if isinstance(node, Variable):
        return any(
            SCRIPTBLOCK_BUILD_RE.search(a.value.text) for a in assignments.get(node.name.lower(), [])
        )
    return False


# ── Pass 1: Invoke-Expression ──


def _check_invoke_expression(
    command: CommandInvocation, tree: SyntaxTree, assignments: dict[str, list[Assignment]]
) -> Finding:
    source = command.argument(("Command",), 0)
    upstream = upstream_elements(command)
    if _fetches(source, assignments) or any(_fetches(e, assignments) for e in upstream):
        message = "CRITICAL: download-then-execute; Invoke-Expression evaluates content fetched from the network"
    elif _references_variable(source) or any(_references_variable(e) for e in upstream):
        message = "Invoke-Expression with variable input evaluates text that is only known at run time"
    else:
        message = "Invoke-Expression evaluates a string as code; call the command directly instead"
    return make_finding(RULE_ID, RULE_NAME, Severity.ERROR, message, command, tree)


# ── Pass 2: script block creation ──


def _is_script_block_factory(member: MemberInvocation) -> bool:
    if member.member_lower == "create" and member.is_static:
        target = member.target
        return isinstance(target, Expression) and bool(
            target.type_name and SCRIPTBLOCK_TYPE_RE.match(target.type_name)
        )
    if member.member_lower == "newscriptblock":
        return "invokecommand" in member.target.lower_text
    return False


def _check_script_block_creation(member: MemberInvocation, tree: SyntaxTree) -> Optional[Finding]:
    if not _is_script_block_factory(member) or not member.arguments:
        return None
    if literal_value(member.arguments[0]) is not None:
        return None
    return make_finding(
        RULE_ID,
        RULE_NAME,
        Severity.ERROR,
        f"Script block created from non-literal text via {member.member}()",
        member,
        tree,
    )


# ── Pass 3: invoking a built script block ──


def _check_invoke_member(
    member: MemberInvocation, tree: SyntaxTree, assignments: dict[str, list[Assignment]]
) -> Optional[Finding]:
    if not _builds_script_block(member.target, assignments):
        return None
    return make_finding(
        RULE_ID,
        RULE_NAME,
        Severity.WARNING,
        f"{member.member}() runs a script block built at run time",
        member,
        tree,
    )


# ── Pass 4: Add-Type ──


def _check_add_type(command: CommandInvocation, tree: SyntaxTree) -> Optional[Finding]:
    definition = command.parameter_argument("TypeDefinition", "MemberDefinition")
    if definition is None and not command.parameters:
        definition = command.positional_arguments[0] if command.positional_arguments else None
    if definition is None or literal_value(definition) is not None:
        return None
    if not variables_in(definition):
        return None
    return make_finding(
        RULE_ID,
        RULE_NAME,
        Severity.WARNING,
        "Add-Type compiles a type definition held in a variable",
        command,
        tree,
    )


# ── Pass 5: remote/background script blocks ──


def _check_remote_script_block(
    command: CommandInvocation, tree: SyntaxTree, assignments: dict[str, list[Assignment]]
) -> Optional[Finding]:
    script_block = command.argument(("ScriptBlock",), 0)
    if not _builds_script_block(script_block, assignments):
        return None
    return make_finding(
        RULE_ID,
        RULE_NAME,
        Severity.WARNING,
        f"{command.name} runs a dynamically constructed script block",
        command,
        tree,
    )


# ── Pass 6: download piped into Invoke-Expression ──


def _check_download_pipeline(pipeline: Pipeline, tree: SyntaxTree) -> Optional[Finding]:
    fetched = False
    for element in pipeline.elements:
        if fetched and isinstance(element, CommandInvocation) and element.name_lower in ("invoke-expression", "iex"):
            return make_finding(
                RULE_ID,
                RULE_NAME,
                Severity.ERROR,
                "CRITICAL: download-then-execute pipeline pipes fetched content into Invoke-Expression",
                pipeline,
                tree,
            )
        if NETWORK_FETCH_RE.search(element.text):
            fetched = True
    return None


@rule_boundary(RULE_ID)
def check_dynamic_execution(tree: SyntaxTree, settings: Optional[RuleSettings] = None) -> list[Finding]:
    findings: list[Finding] = []
    assignments = assignments_by_variable(tree)

    for node in find_all(tree, command_named(*INVOKE_EXPRESSION)):
        findings.append(_check_invoke_expression(node, tree, assignments))

    for node in find_all(tree, member_named("Create", "NewScriptBlock")):
        finding = _check_script_block_creation(node, tree)
        if finding is not None:
            findings.append(finding)

    for node in find_all(tree, member_named("Invoke", "InvokeReturnAsIs")):
        finding = _check_invoke_member(node, tree, assignments)
        if finding is not None:
            findings.append(finding)

    for node in find_all(tree, command_named("Add-Type")):
        finding = _check_add_type(node, tree)
        if finding is not None:
            findings.append(finding)

    for node in find_all(tree, command_named("Invoke-Command", "icm", "Start-Job")):
        finding = _check_remote_script_block(node, tree, assignments)
        if finding is not None:
            findings.append(finding)

    for node in find_all(tree, of_kind(NodeKind.PIPELINE)):
        finding = _check_download_pipeline(node, tree)
        if finding is not None:
            findings.append(finding)

    logger.debug("%s: %d finding(s) in %s", RULE_ID, len(findings), tree.path or "<string>")
    return findings
