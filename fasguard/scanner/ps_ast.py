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

"""PowerShell syntax tree: node variants, source mapping and traversal.

The node set is closed. Rules consume six variants (Assignment, StringLiteral,
CommandInvocation, MemberInvocation, ParameterDeclaration, TryBlock); the
remaining four (ScriptBlock, Pipeline, Variable, Expression) give the tree
its structure. Nodes are built once by the parser and only read afterwards.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, ClassVar, Iterator, Optional, Union

from fasguard.models.findings import SourceRange


class NodeKind(str, Enum):
    """Every syntactic kind the parser produces."""

    SCRIPT_BLOCK = "ScriptBlock"
    PIPELINE = "Pipeline"
    ASSIGNMENT = "Assignment"
    STRING_LITERAL = "StringLiteral"
    COMMAND_INVOCATION = "CommandInvocation"
    MEMBER_INVOCATION = "MemberInvocation"
    PARAMETER_DECLARATION = "ParameterDeclaration"
    TRY_BLOCK = "TryBlock"
    VARIABLE = "Variable"
    EXPRESSION = "Expression"


class SourceMap:
    """Translates character offsets into 1-based line/column ranges."""

    def __init__(self, text: str) -> None:
        self.text = text
        self._line_starts = [0]
        for i, ch in enumerate(text):
            if ch == "\n":
                self._line_starts.append(i + 1)

    def position(self, offset: int) -> tuple[int, int]:
        line_idx = bisect.bisect_right(self._line_starts, offset) - 1
        return line_idx + 1, offset - self._line_starts[line_idx] + 1

    def range(self, start: int, end: int) -> SourceRange:
        start_line, start_col = self.position(start)
        end_line, end_col = self.position(end)
        return SourceRange(
            start_line=start_line,
            start_column=start_col,
            end_line=end_line,
            end_column=end_col,
            start_offset=start,
            end_offset=end,
        )


@dataclass(frozen=True)
class Comment:
    """A line (``#``) or block (``<# #>``) comment."""

    text: str
    extent: SourceRange
    is_block: bool = False


@dataclass(eq=False, kw_only=True)
class Node:
    """Base for all nodes. ``children`` are kept in source order."""

    kind: ClassVar[NodeKind]

    extent: SourceRange
    text: str
    children: list[Node] = field(default_factory=list, repr=False)
    parent: Optional[Node] = field(default=None, repr=False)

    def walk(self) -> Iterator[Node]:
        """Pre-order traversal of this node and its descendants."""
        stack: list[Node] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def ancestors(self) -> Iterator[Node]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    @property
    def lower_text(self) -> str:
        return self.text.lower()


@dataclass(eq=False, kw_only=True)
class AttributeSpec:
    """An attribute such as ``[ValidatePattern('^S-1-5-21-')]``."""

    name: str
    arguments_text: str
    extent: SourceRange
    named_arguments: dict[str, str] = field(default_factory=dict)
    positional_arguments: list[str] = field(default_factory=list)

    @property
    def name_lower(self) -> str:
        return self.name.lower()


@dataclass(eq=False, kw_only=True)
class ScriptBlock(Node):
    """A script, function body, named block or ``{ ... }`` literal."""

    kind: ClassVar[NodeKind] = NodeKind.SCRIPT_BLOCK

    statements: list[Node] = field(default_factory=list, repr=False)
    parameters: list[ParameterDeclaration] = field(default_factory=list, repr=False)
    attributes: list[AttributeSpec] = field(default_factory=list, repr=False)
    function_name: Optional[str] = None
    named_block: Optional[str] = None


@dataclass(eq=False, kw_only=True)
class Pipeline(Node):
    """Two or more elements joined with ``|``."""

    kind: ClassVar[NodeKind] = NodeKind.PIPELINE

    elements: list[Node] = field(default_factory=list, repr=False)


@dataclass(eq=False, kw_only=True)
class Assignment(Node):
    kind: ClassVar[NodeKind] = NodeKind.ASSIGNMENT

    target: Node
    operator: str
    value: Node

    @property
    def target_text(self) -> str:
        return self.target.text

    @property
    def value_text(self) -> str:
        return self.value.text

    @property
    def variable_name(self) -> Optional[str]:
        """Name of the assigned variable, ignoring casts and member paths."""
        for node in self.target.walk():
            if isinstance(node, Variable):
                return node.name
        return None


@dataclass(eq=False, kw_only=True)
class StringLiteral(Node):
    """Quoted strings, here-strings and bareword command arguments."""

    kind: ClassVar[NodeKind] = NodeKind.STRING_LITERAL

    value: str
    quote: str  # single | double | here_single | here_double | bare
    has_variables: bool = False

    @property
    def is_expandable(self) -> bool:
        return self.quote in ("double", "here_double")


@dataclass(eq=False, kw_only=True)
class Variable(Node):
    kind: ClassVar[NodeKind] = NodeKind.VARIABLE

    name: str
    scope: Optional[str] = None
    is_splat: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.scope}:{self.name}" if self.scope else self.name


@dataclass(eq=False, kw_only=True)
class Expression(Node):
    """Any other expression or keyword statement (``if``, ``foreach``, ...)."""

    kind: ClassVar[NodeKind] = NodeKind.EXPRESSION

    expression_type: str
    operator: Optional[str] = None
    member: Optional[str] = None
    type_name: Optional[str] = None


@dataclass(eq=False, kw_only=True)
class CommandParameter:
    """A ``-Name`` token inside a command, with its bound argument if any."""

    name: str
    extent: SourceRange
    argument: Optional[Node] = None
    colon_bound: bool = False

    @property
    def name_lower(self) -> str:
        return self.name.lower()


CommandElement = Union[CommandParameter, Node]


def _parameter_matches(given: str, wanted: str) -> bool:
    """PowerShell accepts unambiguous prefixes of parameter names."""
    given = given.lower()
    wanted = wanted.lower()
    return given == wanted or (len(given) >= 2 and wanted.startswith(given))


@dataclass(eq=False, kw_only=True)
class CommandInvocation(Node):
    kind: ClassVar[NodeKind] = NodeKind.COMMAND_INVOCATION

    name: str
    elements: list[CommandElement] = field(default_factory=list, repr=False)
    positional_arguments: list[Node] = field(default_factory=list, repr=False)
    invocation_operator: Optional[str] = None
    name_node: Optional[Node] = field(default=None, repr=False)

    @property
    def name_lower(self) -> str:
        return self.name.lower()

    @property
    def parameters(self) -> list[CommandParameter]:
        return [e for e in self.elements if isinstance(e, CommandParameter)]

    def parameter(self, *names: str) -> Optional[CommandParameter]:
        for param in self.parameters:
            if any(_parameter_matches(param.name, n) for n in names):
                return param
        return None

    def has_parameter(self, *names: str) -> bool:
        return self.parameter(*names) is not None

    def parameter_argument(self, *names: str) -> Optional[Node]:
        param = self.parameter(*names)
        return param.argument if param is not None else None

    def argument(self, names: tuple[str, ...], position: int = 0) -> Optional[Node]:
        """Named argument if present, else the positional one at ``position``."""
        named = self.parameter_argument(*names)
        if named is not None:
            return named
        if len(self.positional_arguments) > position:
            return self.positional_arguments[position]
        return None


@dataclass(eq=False, kw_only=True)
class MemberInvocation(Node):
    """``$obj.Method(...)`` or ``[Type]::Method(...)``."""

    kind: ClassVar[NodeKind] = NodeKind.MEMBER_INVOCATION

    target: Node
    member: str
    arguments: list[Node] = field(default_factory=list, repr=False)
    is_static: bool = False

    @property
    def target_text(self) -> str:
        return self.target.text

    @property
    def member_lower(self) -> str:
        return self.member.lower()


@dataclass(eq=False, kw_only=True)
class ParameterDeclaration(Node):
    kind: ClassVar[NodeKind] = NodeKind.PARAMETER_DECLARATION

    name: str
    type_name: Optional[str] = None
    attributes: list[AttributeSpec] = field(default_factory=list, repr=False)
    default: Optional[Node] = field(default=None, repr=False)
    documentation: Optional[str] = None

    def attribute(self, name: str) -> Optional[AttributeSpec]:
        wanted = name.lower()
        for attr in self.attributes:
            short = attr.name_lower.rsplit(".", 1)[-1]
            if short == wanted or short == wanted + "attribute":
                return attr
        return None

    def has_attribute(self, name: str) -> bool:
        return self.attribute(name) is not None


@dataclass(eq=False, kw_only=True)
class TryBlock(Node):
    kind: ClassVar[NodeKind] = NodeKind.TRY_BLOCK

    body: ScriptBlock
    catch_blocks: list[ScriptBlock] = field(default_factory=list, repr=False)
    finally_block: Optional[ScriptBlock] = field(default=None, repr=False)


NODE_CLASSES: dict[NodeKind, type[Node]] = {
    NodeKind.SCRIPT_BLOCK: ScriptBlock,
    NodeKind.PIPELINE: Pipeline,
    NodeKind.ASSIGNMENT: Assignment,
    NodeKind.STRING_LITERAL: StringLiteral,
    NodeKind.COMMAND_INVOCATION: CommandInvocation,
    NodeKind.MEMBER_INVOCATION: MemberInvocation,
    NodeKind.PARAMETER_DECLARATION: ParameterDeclaration,
    NodeKind.TRY_BLOCK: TryBlock,
    NodeKind.VARIABLE: Variable,
    NodeKind.EXPRESSION: Expression,
}


@dataclass(eq=False)
class SyntaxTree:
    """A parsed script. Owned by the caller; rules only read it."""

    root: ScriptBlock
    source: str
    path: str = ""
    comments: list[Comment] = field(default_factory=list)

    def find_all(self, predicate: Callable[[Node], bool]) -> list[Node]:
        """All nodes satisfying ``predicate``, in deterministic pre-order."""
        return [node for node in self.root.walk() if predicate(node)]

    def text_of(self, extent: SourceRange) -> str:
        return self.source[extent.start_offset:extent.end_offset]

    @property
    def lower_source(self) -> str:
        return self.source.lower()
