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

"""Traversal helpers shared by the rules.

``find_all`` is the one traversal primitive; the builders below produce
predicates for it, and the ancestry helpers answer "where is this node"
questions (inside a try body, inside which parameter, ...).
"""

from __future__ import annotations

from collections import defaultdict
from typing import Callable, Optional, Union

from fasguard.scanner.ps_ast import (
    Assignment,
    CommandInvocation,
    Expression,
    MemberInvocation,
    Node,
    NodeKind,
    Pipeline,
    SyntaxTree,
    TryBlock,
    Variable,
)

Predicate = Callable[[Node], bool]


def find_all(tree_or_node: Union[SyntaxTree, Node], predicate: Predicate) -> list[Node]:
    """Return every node satisfying ``predicate`` in pre-order.

    The order is deterministic and the tree is never modified, so repeated
    calls return equal lists.
    """
    root = tree_or_node.root if isinstance(tree_or_node, SyntaxTree) else tree_or_node
    return [node for node in root.walk() if predicate(node)]


def of_kind(*kinds: NodeKind) -> Predicate:
    wanted = frozenset(kinds)
    return lambda node: node.kind in wanted


def command_named(*names: str) -> Predicate:
    """Match CommandInvocation nodes by (case-insensitive) command name."""
    wanted = frozenset(n.lower() for n in names)

    def predicate(node: Node) -> bool:
        return isinstance(node, CommandInvocation) and node.name_lower in wanted

    return predicate


def member_named(*names: str) -> Predicate:
    wanted = frozenset(n.lower() for n in names)

    def predicate(node: Node) -> bool:
        return isinstance(node, MemberInvocation) and node.member_lower in wanted

    return predicate


def enclosing(node: Node, kind: NodeKind) -> Optional[Node]:
    """Nearest ancestor of ``kind``, or None."""
    for ancestor in node.ancestors():
        if ancestor.kind == kind:
            return ancestor
    return None


def is_inside_try(node: Node) -> bool:
    """True when ``node`` sits in the body of a try statement.

    Catch and finally blocks do not count: an error raised there is not
    handled by the same statement.
    """
    child = node
    for ancestor in node.ancestors():
        if isinstance(ancestor, TryBlock) and child is ancestor.body:
            return True
        child = ancestor
    return False


def pipeline_position(node: Node) -> tuple[Optional[Pipeline], int]:
    """The pipeline ``node`` is an element of, and its index (-1 if none)."""
    parent = node.parent
    if isinstance(parent, Pipeline):
        for index, element in enumerate(parent.elements):
            if element is node:
                return parent, index
    return None, -1


def upstream_elements(node: Node) -> list[Node]:
    """Pipeline elements that feed into ``node``, nearest last."""
    pipeline, index = pipeline_position(node)
    if pipeline is None:
        return []
    return pipeline.elements[:index]


def variables_in(node: Optional[Node]) -> list[Variable]:
    """Every variable reference at or below ``node``, in pre-order."""
    if node is None:
        return []
    return [n for n in node.walk() if isinstance(n, Variable)]


def assignments_by_variable(tree: SyntaxTree) -> dict[str, list[Assignment]]:
    """Assignments to plain variables, keyed by lower-cased variable name."""
    index: dict[str, list[Assignment]] = defaultdict(list)
    for node in find_all(tree, of_kind(NodeKind.ASSIGNMENT)):
        if node.variable_name:
            index[node.variable_name.lower()].append(node)
    return index


def hashtable_entries(node: Node) -> list[tuple[Node, Node]]:
    """(key, value) pairs of a hashtable literal; empty for anything else."""
    if not isinstance(node, Expression) or node.expression_type != "hashtable":
        return []
    children = node.children
    return list(zip(children[0::2], children[1::2]))


_CATEGORIES = {
    NodeKind.ASSIGNMENT: "assignment",
    NodeKind.STRING_LITERAL: "literal",
    NodeKind.COMMAND_INVOCATION: "command",
    NodeKind.MEMBER_INVOCATION: "member",
    NodeKind.PARAMETER_DECLARATION: "parameter",
    NodeKind.TRY_BLOCK: "try",
    NodeKind.SCRIPT_BLOCK: "structure",
    NodeKind.PIPELINE: "structure",
    NodeKind.VARIABLE: "structure",
    NodeKind.EXPRESSION: "structure",
}


def classify(node: Node) -> str:
    """Map a node to the category the rules dispatch on.

    Every NodeKind has an entry; anything else is a programming error.
    """
    kind = getattr(node, "kind", None)
    try:
        return _CATEGORIES[kind]
    except KeyError:
        raise TypeError(f"Unknown node kind: {kind!r}") from None
