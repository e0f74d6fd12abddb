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

"""Recursive-descent parser turning PowerShell tokens into a SyntaxTree.

The grammar is the practical subset used by deployment scripts:
statements and pipelines, commands with named/positional/colon-bound
parameters, expressions with member access and method calls, casts and
type literals, hashtables, script blocks, param blocks with attributes,
functions, and the keyword statements (if, foreach, for, while, do,
switch, try/catch/finally, trap, return/throw/exit, break/continue).
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional, Union

from fasguard.scanner.ps_ast import (
    Assignment,
    AttributeSpec,
    CommandInvocation,
    CommandParameter,
    Comment,
    Expression,
    MemberInvocation,
    Node,
    ParameterDeclaration,
    Pipeline,
    ScriptBlock,
    SourceMap,
    StringLiteral,
    SyntaxTree,
    TryBlock,
    Variable,
)
from fasguard.scanner.ps_lexer import ScriptParseError, Token, TokenType, tokenize

logger = logging.getLogger(__name__)

# Parameters that never take an argument, so the following token is positional.
KNOWN_SWITCHES = frozenset({
    "asplaintext",
    "assecurestring",
    "force",
    "passthru",
    "recurse",
    "verbose",
    "debug",
    "whatif",
    "confirm",
    "usebasicparsing",
    "wait",
    "nonewline",
    "noprofile",
    "noninteractive",
    "raw",
    "append",
    "unique",
    "notypeinformation",
    "quiet",
    "asjob",
    "allowclobber",
    "skippublishercheck",
    "listavailable",
    "nonewwindow",
    "detailed",
    "full",
    "online",
    "parallel",
    "disablenamechecking",
})

DASH_OPERATORS = frozenset(
    base if prefix == "" else prefix + base
    for base in (
        "eq", "ne", "gt", "ge", "lt", "le", "like", "notlike", "match",
        "notmatch", "replace", "contains", "notcontains", "in", "notin",
        "split",
    )
    for prefix in ("", "i", "c")
) | frozenset({
    "and", "or", "xor", "band", "bor", "bxor", "shl", "shr", "is",
    "isnot", "as", "f", "join",
})

UNARY_DASH_OPERATORS = frozenset({"not", "bnot", "split", "join"})

BINARY_SYMBOLS = frozenset({"+", "-", "*", "/", "%", "..", "??"})

NAMED_BLOCKS = frozenset({"begin", "process", "end", "dynamicparam", "clean"})

FUNCTION_KEYWORDS = frozenset({"function", "filter", "workflow", "configuration"})

# Parens, blocks, subexpressions and hashtables open one level each.
MAX_NESTING_DEPTH = 64

_STATEMENT_END = frozenset({
    TokenType.NEWLINE,
    TokenType.SEMI,
    TokenType.RPAREN,
    TokenType.RBRACE,
    TokenType.EOF,
})

_COMMAND_END = _STATEMENT_END | {TokenType.PIPE}

# Adjacent tokens that continue a bareword argument (e.g. C:\$dir\file.txt).
_FUSABLE = frozenset({
    TokenType.WORD,
    TokenType.NUMBER,
    TokenType.VARIABLE,
    TokenType.STRING,
    TokenType.DOLLAR_PAREN,
    TokenType.ASSIGN,
    TokenType.DOT,
    TokenType.DCOLON,
})

_OPENERS = {
    TokenType.LPAREN,
    TokenType.AT_PAREN,
    TokenType.DOLLAR_PAREN,
    TokenType.LBRACE,
    TokenType.AT_BRACE,
    TokenType.LBRACKET,
}
_CLOSERS = {TokenType.RPAREN, TokenType.RBRACE, TokenType.RBRACKET}

_HELP_PARAMETER_RE = re.compile(r"^\s*\.PARAMETER\s+(\w+)\s*$", re.IGNORECASE | re.MULTILINE)
_HELP_KEYWORD_RE = re.compile(r"^\s*\.[A-Z]+\b", re.IGNORECASE | re.MULTILINE)


def _adopt(node: Node, children) -> Node:
    kept = [c for c in children if c is not None]
    kept.sort(key=lambda c: c.extent.start_offset)
    for child in kept:
        child.parent = node
    node.children = kept
    return node


class Parser:
    """Parses one script. Create a new instance per script."""

    def __init__(self, text: str, path: str = "") -> None:
        self.text = text
        self.path = path
        self.source_map = SourceMap(text)
        self.tokens, self.comments = tokenize(text, self.source_map)
        self.index = 0
        self._last_end = 0
        # True while inside (...) where line breaks do not end expressions.
        self._groups: list[bool] = []

    # -- token helpers -----------------------------------------------------

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def peek(self, ahead: int = 1) -> Token:
        return self.tokens[min(self.index + ahead, len(self.tokens) - 1)]

    def peek_past_newlines(self) -> Token:
        i = self.index
        while self.tokens[i].type == TokenType.NEWLINE:
            i += 1
        return self.tokens[i]

    def advance(self) -> Token:
        tok = self.tokens[self.index]
        if tok.type != TokenType.EOF:
            self.index += 1
            if tok.type != TokenType.NEWLINE:
                self._last_end = tok.end
        return tok

    def at(self, *types: TokenType) -> bool:
        return self.current.type in types

    def expect(self, type_: TokenType, what: str) -> Token:
        if not self.at(type_):
            raise self.error(f"Expected {what}")
        return self.advance()

    def skip_newlines(self) -> None:
        while self.current.type == TokenType.NEWLINE:
            self.advance()

    def skip_terminators(self) -> None:
        while self.current.type in (TokenType.NEWLINE, TokenType.SEMI):
            self.advance()

    def error(self, message: str, token: Optional[Token] = None) -> ScriptParseError:
        token = token or self.current
        line, column = self.source_map.position(token.start)
        found = "end of input" if token.type == TokenType.EOF else repr(self.text[token.start:token.end])
        return ScriptParseError(f"{message}, found {found}", line, column)

    @property
    def _newlines_ok(self) -> bool:
        return bool(self._groups) and self._groups[-1]

    def _open_group(self, newlines_ok: bool) -> None:
        if len(self._groups) >= MAX_NESTING_DEPTH:
            raise self.error(f"Nesting deeper than {MAX_NESTING_DEPTH} levels")
        self._groups.append(newlines_ok)

    def _node(self, cls, start: int, end: int, children=(), **fields) -> Node:
        node = cls(extent=self.source_map.range(start, end), text=self.text[start:end], **fields)
        return _adopt(node, children)

    # -- entry point -------------------------------------------------------

    def parse(self) -> SyntaxTree:
        statements, parameters, attributes = self._block_contents(TokenType.EOF)
        if not self.at(TokenType.EOF):
            raise self.error("Unexpected token")
        root = self._node(
            ScriptBlock,
            0,
            len(self.text),
            [*parameters, *statements],
            statements=statements,
            parameters=parameters,
            attributes=attributes,
        )
        tree = SyntaxTree(root=root, source=self.text, path=self.path, comments=self.comments)
        self._attach_parameter_documentation(tree)
        return tree

    # -- blocks ------------------------------------------------------------

    def _block_contents(self, closer: TokenType):
        """Parse ``[attributes] param(...) statements`` up to ``closer``."""
        self._open_group(False)
        try:
            self.skip_terminators()
            parameters: list[ParameterDeclaration] = []
            attributes: list[AttributeSpec] = []
            save = self.index
            leading: list[AttributeSpec] = []
            while self.at(TokenType.LBRACKET):
                item = self._bracket_item()
                if not isinstance(item, AttributeSpec):
                    break
                leading.append(item)
                self.skip_newlines()
            if self.current.is_word("param") and self.peek_past_newlines_after(1).type == TokenType.LPAREN:
                self.advance()
                self.skip_newlines()
                parameters = self._parameter_list()
                attributes = leading
            else:
                self.index = save
            statements = self._statements(closer)
            return statements, parameters, attributes
        finally:
            self._groups.pop()

    def peek_past_newlines_after(self, ahead: int) -> Token:
        i = min(self.index + ahead, len(self.tokens) - 1)
        while self.tokens[i].type == TokenType.NEWLINE:
            i += 1
        return self.tokens[i]

    def _statements(self, closer: TokenType) -> list[Node]:
        statements: list[Node] = []
        while True:
            self.skip_terminators()
            if self.at(closer, TokenType.EOF):
                break
            before = self.index
            statement = self.parse_statement()
            if statement is not None:
                statements.append(statement)
            if self.index == before:
                raise self.error("Unexpected token")
        return statements

    def _statement_list(self, closer: TokenType) -> list[Node]:
        self._open_group(False)
        try:
            return self._statements(closer)
        finally:
            self._groups.pop()

    def parse_script_block(self, named_block: Optional[str] = None, start: Optional[int] = None) -> ScriptBlock:
        open_tok = self.expect(TokenType.LBRACE, "'{'")
        statements, parameters, attributes = self._block_contents(TokenType.RBRACE)
        self.expect(TokenType.RBRACE, "'}'")
        return self._node(
            ScriptBlock,
            open_tok.start if start is None else start,
            self._last_end,
            [*parameters, *statements],
            statements=statements,
            parameters=parameters,
            attributes=attributes,
            named_block=named_block,
        )

    # -- param blocks and attributes ---------------------------------------

    def _parameter_list(self) -> list[ParameterDeclaration]:
        self.expect(TokenType.LPAREN, "'('")
        params: list[ParameterDeclaration] = []
        while True:
            while self.at(TokenType.NEWLINE, TokenType.COMMA):
                self.advance()
            if self.at(TokenType.RPAREN):
                self.advance()
                return params
            if self.at(TokenType.EOF):
                raise self.error("Unterminated parameter list")
            params.append(self._parameter_declaration())

    def _parameter_declaration(self) -> ParameterDeclaration:
        start = self.current.start
        attributes: list[AttributeSpec] = []
        type_name: Optional[str] = None
        while self.at(TokenType.LBRACKET):
            item = self._bracket_item()
            if isinstance(item, AttributeSpec):
                attributes.append(item)
            else:
                type_name = item
            self.skip_newlines()
        var_tok = self.expect(TokenType.VARIABLE, "a parameter variable")
        variable = self._variable(var_tok)
        default = None
        if self.at(TokenType.ASSIGN):
            self.advance()
            self.skip_newlines()
            self._open_group(True)
            try:
                default = self.parse_expression(allow_comma=False)
            finally:
                self._groups.pop()
        return self._node(
            ParameterDeclaration,
            start,
            self._last_end,
            [variable, default],
            name=variable.name,
            type_name=type_name,
            attributes=attributes,
            default=default,
        )

    def _bracket_item(self) -> Union[str, AttributeSpec]:
        """Parse ``[TypeName]`` (returns the name) or ``[Attribute(...)]``."""
        open_tok = self.expect(TokenType.LBRACKET, "'['")
        self.skip_newlines()
        name_start = self.current.start
        depth = 0
        while True:
            tok = self.current
            if tok.type == TokenType.EOF:
                raise self.error("Unterminated type name", open_tok)
            if tok.type == TokenType.LBRACKET:
                depth += 1
            elif tok.type == TokenType.RBRACKET:
                if depth == 0:
                    break
                depth -= 1
            elif tok.type == TokenType.LPAREN and depth == 0:
                break
            self.advance()
        name = self.text[name_start:self.current.start].strip()
        if self.at(TokenType.RBRACKET):
            self.advance()
            return name
        args_open = self.advance()
        args_tokens = self._balanced_tokens(args_open)
        args_close = self.advance()
        self.skip_newlines()
        self.expect(TokenType.RBRACKET, "']'")
        named, positional = self._attribute_arguments(args_tokens)
        return AttributeSpec(
            name=name,
            arguments_text=self.text[args_open.end:args_close.start].strip(),
            extent=self.source_map.range(open_tok.start, self._last_end),
            named_arguments=named,
            positional_arguments=positional,
        )

    def _balanced_tokens(self, open_tok: Token) -> list[Token]:
        """Collect tokens up to (not including) the closer matching ``open_tok``."""
        collected: list[Token] = []
        depth = 0
        while True:
            tok = self.current
            if tok.type == TokenType.EOF:
                raise self.error("Unbalanced brackets", open_tok)
            if tok.type in _OPENERS:
                depth += 1
            elif tok.type in _CLOSERS:
                if depth == 0:
                    return collected
                depth -= 1
            collected.append(self.advance())

    def _attribute_arguments(self, tokens: list[Token]) -> tuple[dict[str, str], list[str]]:
        segments: list[list[Token]] = [[]]
        depth = 0
        for tok in tokens:
            if tok.type in _OPENERS:
                depth += 1
            elif tok.type in _CLOSERS:
                depth -= 1
            if tok.type == TokenType.COMMA and depth == 0:
                segments.append([])
            elif tok.type != TokenType.NEWLINE:
                segments[-1].append(tok)
        named: dict[str, str] = {}
        positional: list[str] = []
        for seg in segments:
            if not seg:
                continue
            if seg[0].type == TokenType.WORD and len(seg) >= 2 and seg[1].type == TokenType.ASSIGN:
                rest = seg[2:]
                if len(rest) == 1 and rest[0].type == TokenType.STRING:
                    value = rest[0].value
                elif rest:
                    value = self.text[rest[0].start:rest[-1].end]
                else:
                    value = ""
                named[seg[0].value.lower()] = value
            elif len(seg) == 1 and seg[0].type == TokenType.WORD:
                named[seg[0].value.lower()] = "$true"
            elif len(seg) == 1 and seg[0].type == TokenType.STRING:
                positional.append(seg[0].value)
            else:
                positional.append(self.text[seg[0].start:seg[-1].end])
        return named, positional

    # -- statements --------------------------------------------------------

    def parse_statement(self) -> Optional[Node]:
        tok = self.current
        if tok.type == TokenType.WORD:
            keyword = tok.value.lower()
            if keyword.startswith(":") and len(keyword) > 1:
                # Loop label.
                self.advance()
                self.skip_newlines()
                return self.parse_statement()
            if keyword in FUNCTION_KEYWORDS and self.peek().type == TokenType.WORD:
                return self._function()
            if keyword == "if":
                return self._if()
            if keyword == "foreach" and self._next_is(TokenType.LPAREN, TokenType.PARAMETER):
                return self._foreach()
            if keyword in ("while", "for") and self._next_is(TokenType.LPAREN):
                return self._while_or_for()
            if keyword == "do" and self._next_is(TokenType.LBRACE):
                return self._do()
            if keyword == "switch" and self._next_is(TokenType.LPAREN, TokenType.PARAMETER):
                return self._switch()
            if keyword == "try" and self._next_is(TokenType.LBRACE):
                return self._try()
            if keyword == "trap":
                return self._trap()
            if keyword in ("return", "throw", "exit"):
                return self._flow(keyword)
            if keyword in ("break", "continue"):
                return self._break(keyword)
            if keyword in NAMED_BLOCKS and self._next_is(TokenType.LBRACE):
                start = self.advance().start
                self.skip_newlines()
                return self.parse_script_block(named_block=keyword, start=start)
            if keyword in ("class", "enum") and self.peek().type == TokenType.WORD:
                return self._type_definition(keyword)
            if keyword == "using" and self.peek().type == TokenType.WORD:
                return self._using()
            if keyword == "data" and self._next_is(TokenType.LBRACE, TokenType.PARAMETER):
                start = self.advance().start
                while self.at(TokenType.PARAMETER, TokenType.WORD, TokenType.COMMA):
                    self.advance()
                self.skip_newlines()
                return self.parse_script_block(named_block="data", start=start)
        return self.parse_pipeline_statement()

    def _next_is(self, *types: TokenType) -> bool:
        return self.peek_past_newlines_after(1).type in types

    def _keyword_statement(self, keyword: str, start: int, children) -> Expression:
        return self._node(
            Expression,
            start,
            self._last_end,
            children,
            expression_type="keyword_statement",
            operator=keyword,
        )

    def _paren_condition(self) -> Optional[Node]:
        self.skip_newlines()
        self.expect(TokenType.LPAREN, "'('")
        self._open_group(True)
        try:
            self.skip_newlines()
            condition = None if self.at(TokenType.RPAREN) else self.parse_pipeline_statement()
            self.skip_newlines()
            self.expect(TokenType.RPAREN, "')'")
        finally:
            self._groups.pop()
        return condition

    def _function(self) -> ScriptBlock:
        start = self.advance().start
        name = self.advance().value
        parameters: list[ParameterDeclaration] = []
        if self.at(TokenType.LPAREN):
            parameters = self._parameter_list()
        self.skip_newlines()
        self.expect(TokenType.LBRACE, "'{'")
        statements, body_parameters, attributes = self._block_contents(TokenType.RBRACE)
        self.expect(TokenType.RBRACE, "'}'")
        parameters = parameters + body_parameters
        return self._node(
            ScriptBlock,
            start,
            self._last_end,
            [*parameters, *statements],
            statements=statements,
            parameters=parameters,
            attributes=attributes,
            function_name=name,
        )

    def _if(self) -> Expression:
        start = self.advance().start
        children: list[Node] = [self._paren_condition()]
        self.skip_newlines()
        children.append(self.parse_script_block())
        while True:
            save = self.index
            self.skip_newlines()
            if self.current.is_word("elseif"):
                self.advance()
                children.append(self._paren_condition())
                self.skip_newlines()
                children.append(self.parse_script_block())
            elif self.current.is_word("else"):
                self.advance()
                self.skip_newlines()
                children.append(self.parse_script_block())
                break
            else:
                self.index = save
                break
        return self._keyword_statement("if", start, children)

    def _foreach(self) -> Expression:
        start = self.advance().start
        while self.at(TokenType.PARAMETER):
            self.advance()
            if self.at(TokenType.NUMBER, TokenType.VARIABLE):
                self.advance()
        self.skip_newlines()
        self.expect(TokenType.LPAREN, "'('")
        self._open_group(True)
        try:
            self.skip_newlines()
            variable = self._variable(self.expect(TokenType.VARIABLE, "a loop variable"))
            self.skip_newlines()
            if not self.current.is_word("in"):
                raise self.error("Expected 'in'")
            self.advance()
            self.skip_newlines()
            collection = self.parse_pipeline_statement()
            self.skip_newlines()
            self.expect(TokenType.RPAREN, "')'")
        finally:
            self._groups.pop()
        self.skip_newlines()
        body = self.parse_script_block()
        return self._keyword_statement("foreach", start, [variable, collection, body])

    def _while_or_for(self) -> Expression:
        keyword_tok = self.advance()
        keyword = keyword_tok.value.lower()
        children: list[Node] = []
        if keyword == "while":
            children.append(self._paren_condition())
        else:
            self.skip_newlines()
            self.expect(TokenType.LPAREN, "'('")
            self._open_group(False)
            try:
                while True:
                    while self.at(TokenType.NEWLINE, TokenType.SEMI):
                        self.advance()
                    if self.at(TokenType.RPAREN):
                        break
                    if self.at(TokenType.EOF):
                        raise self.error("Unterminated for statement")
                    children.append(self.parse_pipeline_statement())
                self.advance()
            finally:
                self._groups.pop()
        self.skip_newlines()
        children.append(self.parse_script_block())
        return self._keyword_statement(keyword, keyword_tok.start, children)

    def _do(self) -> Expression:
        start = self.advance().start
        self.skip_newlines()
        body = self.parse_script_block()
        self.skip_newlines()
        if not (self.current.is_word("while") or self.current.is_word("until")):
            raise self.error("Expected 'while' or 'until' after do block")
        self.advance()
        condition = self._paren_condition()
        return self._keyword_statement("do", start, [body, condition])

    def _switch(self) -> Expression:
        start = self.advance().start
        children: list[Node] = []
        while self.at(TokenType.PARAMETER):
            flag = self.advance()
            if flag.value.lower() == "file":
                children.append(self._command_value())
        self.skip_newlines()
        if self.at(TokenType.LPAREN):
            children.append(self._paren_condition())
        self.skip_newlines()
        self.expect(TokenType.LBRACE, "'{'")
        self._open_group(False)
        try:
            while True:
                self.skip_terminators()
                if self.at(TokenType.RBRACE):
                    break
                if self.at(TokenType.EOF):
                    raise self.error("Unterminated switch body")
                if self.at(TokenType.LBRACE):
                    children.append(self.parse_script_block())
                else:
                    children.append(self._command_value())
                self.skip_newlines()
                children.append(self.parse_script_block())
        finally:
            self._groups.pop()
        self.advance()
        return self._keyword_statement("switch", start, children)

    def _try(self) -> TryBlock:
        start = self.advance().start
        self.skip_newlines()
        body = self.parse_script_block()
        catches: list[ScriptBlock] = []
        final: Optional[ScriptBlock] = None
        while True:
            save = self.index
            self.skip_newlines()
            if self.current.is_word("catch"):
                catch_start = self.advance().start
                self.skip_newlines()
                while self.at(TokenType.LBRACKET, TokenType.COMMA):
                    if self.at(TokenType.COMMA):
                        self.advance()
                    else:
                        self._bracket_item()
                    self.skip_newlines()
                catches.append(self.parse_script_block(named_block="catch", start=catch_start))
            elif self.current.is_word("finally"):
                finally_start = self.advance().start
                self.skip_newlines()
                final = self.parse_script_block(named_block="finally", start=finally_start)
                break
            else:
                self.index = save
                break
        if not catches and final is None:
            raise self.error("Missing catch or finally after try block")
        return self._node(
            TryBlock,
            start,
            self._last_end,
            [body, *catches, final],
            body=body,
            catch_blocks=catches,
            finally_block=final,
        )

    def _trap(self) -> Expression:
        start = self.advance().start
        self.skip_newlines()
        if self.at(TokenType.LBRACKET):
            self._bracket_item()
            self.skip_newlines()
        body = self.parse_script_block()
        return self._keyword_statement("trap", start, [body])

    def _flow(self, keyword: str) -> Expression:
        start = self.advance().start
        value = None
        if not self.at(*_COMMAND_END):
            value = self.parse_pipeline_statement()
        return self._keyword_statement(keyword, start, [value])

    def _break(self, keyword: str) -> Expression:
        start = self.advance().start
        if self.at(TokenType.WORD, TokenType.VARIABLE):
            self.advance()
        return self._keyword_statement(keyword, start, [])

    def _type_definition(self, keyword: str) -> Expression:
        start = self.advance().start
        while not self.at(TokenType.LBRACE):
            if self.at(TokenType.EOF):
                raise self.error(f"Expected '{{' in {keyword} definition")
            self.advance()
        open_tok = self.advance()
        self._balanced_tokens(open_tok)
        self.advance()
        return self._keyword_statement(keyword, start, [])

    def _using(self) -> Expression:
        start = self.advance().start
        while not self.at(TokenType.NEWLINE, TokenType.SEMI, TokenType.EOF):
            self.advance()
        return self._keyword_statement("using", start, [])

    # -- pipelines and commands --------------------------------------------

    def parse_pipeline_statement(self) -> Node:
        start = self.current.start
        first = self._pipeline_element()
        if self.at(TokenType.ASSIGN) and not isinstance(first, CommandInvocation):
            operator = self.advance().value
            self.skip_newlines()
            value = self.parse_statement()
            if value is None:
                raise self.error("Expected a value after assignment operator")
            return self._node(
                Assignment,
                start,
                self._last_end,
                [first, value],
                target=first,
                operator=operator,
                value=value,
            )
        elements = [first]
        while self.at(TokenType.PIPE):
            self.advance()
            self.skip_newlines()
            elements.append(self._pipeline_element())
        if len(elements) == 1:
            node = first
        else:
            node = self._node(Pipeline, start, self._last_end, elements, elements=elements)
        while self.at(TokenType.OPERATOR) and self.current.value in ("&&", "||"):
            operator = self.advance().value
            self.skip_newlines()
            right = self.parse_pipeline_statement()
            node = self._node(
                Expression,
                start,
                self._last_end,
                [node, right],
                expression_type="pipeline_chain",
                operator=operator,
            )
        return node

    def _pipeline_element(self) -> Node:
        if self.at(TokenType.AMPERSAND, TokenType.DOT_SOURCE, TokenType.WORD):
            return self.parse_command()
        node = self.parse_expression()
        while self.at(TokenType.REDIRECT):
            self._redirect()
        return node

    def parse_command(self) -> CommandInvocation:
        start = self.current.start
        invocation_operator = None
        if self.at(TokenType.AMPERSAND, TokenType.DOT_SOURCE):
            invocation_operator = self.advance().value
            name_node = self._command_value()
        else:
            name_node = self._bareword()
        if isinstance(name_node, StringLiteral):
            name = name_node.value
        else:
            name = name_node.text
        elements: list = []
        positional: list[Node] = []
        extra: list[Node] = []
        while True:
            tok = self.current
            if tok.type in _COMMAND_END:
                break
            if tok.type == TokenType.OPERATOR and tok.value in ("&&", "||"):
                break
            if tok.type == TokenType.AMPERSAND:
                # Trailing '&' runs the pipeline as a background job.
                self.advance()
                break
            if tok.type == TokenType.REDIRECT:
                target = self._redirect()
                if target is not None:
                    extra.append(target)
                continue
            if tok.type == TokenType.PARAMETER:
                self.advance()
                param = CommandParameter(
                    name=tok.value,
                    extent=self.source_map.range(tok.start, tok.end),
                    colon_bound=tok.bound,
                )
                if tok.bound:
                    param.argument = self._command_argument()
                elif tok.value.lower() not in KNOWN_SWITCHES and self._starts_argument():
                    param.argument = self._command_argument()
                elements.append(param)
                continue
            if tok.type == TokenType.WORD and tok.value == "--":
                self.advance()
                continue
            argument = self._command_argument()
            elements.append(argument)
            positional.append(argument)
        children = [name_node, *extra]
        for element in elements:
            if isinstance(element, CommandParameter):
                children.append(element.argument)
            else:
                children.append(element)
        return self._node(
            CommandInvocation,
            start,
            self._last_end,
            children,
            name=name,
            elements=elements,
            positional_arguments=positional,
            invocation_operator=invocation_operator,
            name_node=name_node,
        )

    def _starts_argument(self) -> bool:
        tok = self.current
        if tok.type in _COMMAND_END or tok.type in (TokenType.PARAMETER, TokenType.REDIRECT, TokenType.AMPERSAND):
            return False
        if tok.type == TokenType.OPERATOR and tok.value in ("&&", "||"):
            return False
        return True

    def _redirect(self) -> Optional[Node]:
        tok = self.advance()
        if "&" in tok.value or self.at(*_COMMAND_END):
            return None
        return self._command_value()

    def _command_argument(self) -> Node:
        start = self.current.start
        first = self._command_value()
        if not self.at(TokenType.COMMA):
            return first
        items = [first]
        while self.at(TokenType.COMMA):
            self.advance()
            self.skip_newlines()
            items.append(self._command_value())
        return self._node(Expression, start, self._last_end, items, expression_type="array")

    def _command_value(self) -> Node:
        """One argument in command mode: a bareword or an expression primary."""
        if self.at(TokenType.WORD, TokenType.NUMBER, TokenType.ASSIGN, TokenType.DOT, TokenType.DCOLON):
            return self._bareword()
        if self.at(TokenType.LBRACKET):
            node = self._unary()
        else:
            node = self._postfix(self._primary())
        return self._fuse(node, node.extent.start_offset)

    def _bareword(self) -> Node:
        tok = self.advance()
        if tok.type == TokenType.NUMBER:
            node: Node = self._node(Expression, tok.start, tok.end, expression_type="number")
        else:
            node = self._node(StringLiteral, tok.start, tok.end, value=tok.value, quote="bare")
        return self._fuse(node, tok.start)

    def _fuse(self, node: Node, start: int) -> Node:
        parts = [node]
        while not self.current.space_before and self.current.type in _FUSABLE:
            tok = self.current
            if tok.type in (TokenType.VARIABLE, TokenType.STRING, TokenType.DOLLAR_PAREN):
                parts.append(self._postfix(self._primary()))
            else:
                self.advance()
                parts.append(self._node(StringLiteral, tok.start, tok.end, value=tok.value, quote="bare"))
        if len(parts) == 1:
            return node
        end = self._last_end
        literal = all(
            (isinstance(p, StringLiteral) and p.quote == "bare")
            or (isinstance(p, Expression) and p.expression_type == "number")
            for p in parts
        )
        if literal:
            value = "".join(p.value if isinstance(p, StringLiteral) else p.text for p in parts)
            return self._node(StringLiteral, start, end, value=value, quote="bare")
        return self._node(Expression, start, end, parts, expression_type="expandable_bareword")

    # -- expressions -------------------------------------------------------

    def parse_expression(self, allow_comma: bool = True) -> Node:
        start = self.current.start
        left = self._comma_list(allow_comma)
        while True:
            if self._newlines_ok:
                self.skip_newlines()
            operator = self._binary_operator()
            if operator is None:
                return left
            self.advance()
            self.skip_newlines()
            right = self._comma_list(allow_comma)
            left = self._node(
                Expression,
                start,
                self._last_end,
                [left, right],
                expression_type="binary",
                operator=operator,
            )

    def _binary_operator(self) -> Optional[str]:
        tok = self.current
        if tok.type == TokenType.OPERATOR and tok.value in BINARY_SYMBOLS:
            return tok.value
        if tok.type == TokenType.PARAMETER and tok.value.lower() in DASH_OPERATORS:
            return "-" + tok.value.lower()
        return None

    def _comma_list(self, allow_comma: bool) -> Node:
        start = self.current.start
        first = self._unary()
        if not allow_comma or not self.at(TokenType.COMMA):
            return first
        items = [first]
        while self.at(TokenType.COMMA):
            self.advance()
            self.skip_newlines()
            items.append(self._unary())
        return self._node(Expression, start, self._last_end, items, expression_type="array")

    def _unary(self) -> Node:
        tok = self.current
        start = tok.start
        if tok.type == TokenType.OPERATOR and tok.value in ("!", "-", "+", "++", "--"):
            self.advance()
            operand = self._unary()
            return self._node(Expression, start, self._last_end, [operand], expression_type="unary", operator=tok.value)
        if tok.type == TokenType.PARAMETER and tok.value.lower() in UNARY_DASH_OPERATORS:
            self.advance()
            operand = self._unary()
            return self._node(
                Expression, start, self._last_end, [operand], expression_type="unary", operator="-" + tok.value.lower()
            )
        if tok.type == TokenType.COMMA:
            self.advance()
            operand = self._unary()
            return self._node(Expression, start, self._last_end, [operand], expression_type="array")
        if tok.type == TokenType.LBRACKET:
            type_name = self._bracket_item()
            if isinstance(type_name, AttributeSpec):
                if self.at(*_COMMAND_END):
                    return self._node(Expression, start, self._last_end, expression_type="attribute")
                # Attributed expression; the attribute carries no tree node.
                return self._unary()
            if self._starts_cast_operand():
                operand = self._unary()
                return self._node(
                    Expression, start, self._last_end, [operand], expression_type="cast", type_name=type_name
                )
            literal = self._node(Expression, start, self._last_end, expression_type="type_literal", type_name=type_name)
            return self._postfix(literal)
        return self._postfix(self._primary())

    def _starts_cast_operand(self) -> bool:
        tok = self.current
        if tok.type in (TokenType.DCOLON, TokenType.DOT):
            return False
        return tok.type in (
            TokenType.VARIABLE,
            TokenType.STRING,
            TokenType.NUMBER,
            TokenType.LPAREN,
            TokenType.AT_PAREN,
            TokenType.AT_BRACE,
            TokenType.DOLLAR_PAREN,
            TokenType.LBRACKET,
            TokenType.LBRACE,
            TokenType.SPLAT,
        ) or (tok.type == TokenType.OPERATOR and tok.value in ("!", "-", "+")) or (
            tok.type == TokenType.PARAMETER and tok.value.lower() in UNARY_DASH_OPERATORS
        )

    def _variable(self, tok: Token) -> Variable:
        scope: Optional[str] = None
        name = tok.value
        if ":" in name and not name.startswith(":"):
            scope, _, name = name.partition(":")
        return self._node(
            Variable, tok.start, tok.end, name=name, scope=scope, is_splat=tok.type == TokenType.SPLAT
        )

    def _primary(self) -> Node:
        tok = self.current
        kind = tok.type
        if kind in (TokenType.VARIABLE, TokenType.SPLAT):
            self.advance()
            return self._variable(tok)
        if kind == TokenType.STRING:
            self.advance()
            return self._node(
                StringLiteral, tok.start, tok.end, value=tok.value, quote=tok.quote, has_variables=tok.has_variables
            )
        if kind == TokenType.NUMBER:
            self.advance()
            return self._node(Expression, tok.start, tok.end, expression_type="number")
        if kind == TokenType.WORD:
            self.advance()
            return self._node(StringLiteral, tok.start, tok.end, value=tok.value, quote="bare")
        if kind == TokenType.LPAREN:
            self.advance()
            self._open_group(True)
            try:
                self.skip_newlines()
                inner = None if self.at(TokenType.RPAREN) else self.parse_pipeline_statement()
                self.skip_newlines()
                self.expect(TokenType.RPAREN, "')'")
            finally:
                self._groups.pop()
            return self._node(Expression, tok.start, self._last_end, [inner], expression_type="paren")
        if kind in (TokenType.DOLLAR_PAREN, TokenType.AT_PAREN):
            self.advance()
            statements = self._statement_list(TokenType.RPAREN)
            self.expect(TokenType.RPAREN, "')'")
            expression_type = "subexpression" if kind == TokenType.DOLLAR_PAREN else "array_subexpression"
            return self._node(Expression, tok.start, self._last_end, statements, expression_type=expression_type)
        if kind == TokenType.AT_BRACE:
            return self._hashtable()
        if kind == TokenType.LBRACE:
            return self.parse_script_block()
        if kind in (TokenType.AMPERSAND, TokenType.DOT_SOURCE):
            return self.parse_command()
        if kind in (TokenType.RPAREN, TokenType.RBRACE, TokenType.RBRACKET, TokenType.EOF):
            raise self.error("Unexpected token")
        if kind in (TokenType.NEWLINE, TokenType.SEMI):
            raise self.error("Expected an expression")
        self.advance()
        return self._node(Expression, tok.start, tok.end, expression_type="unknown", operator=tok.value)

    def _hashtable(self) -> Expression:
        open_tok = self.advance()
        children: list[Node] = []
        self._open_group(False)
        try:
            while True:
                self.skip_terminators()
                if self.at(TokenType.RBRACE):
                    break
                if self.at(TokenType.EOF):
                    raise self.error("Unterminated hashtable", open_tok)
                children.append(self._postfix(self._primary()))
                self.skip_newlines()
                self.expect(TokenType.ASSIGN, "'=' in hashtable entry")
                self.skip_newlines()
                value = self.parse_statement()
                if value is None:
                    raise self.error("Expected a value in hashtable entry")
                children.append(value)
        finally:
            self._groups.pop()
        self.advance()
        return self._node(Expression, open_tok.start, self._last_end, children, expression_type="hashtable")

    def _postfix(self, node: Node) -> Node:
        start = node.extent.start_offset
        while True:
            tok = self.current
            if tok.type in (TokenType.DOT, TokenType.DCOLON) and not tok.space_before:
                self.advance()
                is_static = tok.type == TokenType.DCOLON
                member_tok = self.current
                if member_tok.type in (TokenType.WORD, TokenType.STRING, TokenType.NUMBER):
                    member = member_tok.value
                    self.advance()
                elif member_tok.type == TokenType.VARIABLE:
                    member = "$" + member_tok.value
                    self.advance()
                else:
                    raise self.error("Expected a member name")
                if self.at(TokenType.LPAREN) and not self.current.space_before:
                    arguments = self._argument_list()
                    node = self._node(
                        MemberInvocation,
                        start,
                        self._last_end,
                        [node, *arguments],
                        target=node,
                        member=member,
                        arguments=arguments,
                        is_static=is_static,
                    )
                else:
                    node = self._node(
                        Expression,
                        start,
                        self._last_end,
                        [node],
                        expression_type="member_access",
                        member=member,
                        operator="::" if is_static else ".",
                    )
            elif tok.type == TokenType.LBRACKET and not tok.space_before:
                self.advance()
                self._open_group(True)
                try:
                    self.skip_newlines()
                    index = self.parse_expression()
                    self.skip_newlines()
                    self.expect(TokenType.RBRACKET, "']'")
                finally:
                    self._groups.pop()
                node = self._node(Expression, start, self._last_end, [node, index], expression_type="index")
            elif tok.type == TokenType.OPERATOR and tok.value in ("++", "--") and not tok.space_before:
                self.advance()
                node = self._node(
                    Expression, start, self._last_end, [node], expression_type="unary", operator=tok.value
                )
            else:
                return node

    def _argument_list(self) -> list[Node]:
        self.expect(TokenType.LPAREN, "'('")
        arguments: list[Node] = []
        self._open_group(True)
        try:
            self.skip_newlines()
            while not self.at(TokenType.RPAREN):
                arguments.append(self.parse_expression(allow_comma=False))
                self.skip_newlines()
                if self.at(TokenType.COMMA):
                    self.advance()
                    self.skip_newlines()
                elif not self.at(TokenType.RPAREN):
                    raise self.error("Expected ',' or ')' in argument list")
            self.advance()
        finally:
            self._groups.pop()
        return arguments

    # -- documentation -----------------------------------------------------

    def _attach_parameter_documentation(self, tree: SyntaxTree) -> None:
        help_text = self._help_parameters(tree.comments)
        comments_by_end_line: dict[int, Comment] = {}
        comments_by_start_line: dict[int, Comment] = {}
        for comment in tree.comments:
            line_start = comment.extent.start_offset - (comment.extent.start_column - 1)
            if not tree.source[line_start:comment.extent.start_offset].strip():
                comments_by_end_line[comment.extent.end_line] = comment
            comments_by_start_line.setdefault(comment.extent.start_line, comment)
        for node in tree.find_all(lambda n: isinstance(n, ParameterDeclaration)):
            doc = None
            preceding = comments_by_end_line.get(node.extent.start_line - 1)
            # A comment-based help block is not the doc for its next line.
            if preceding is not None and not (preceding.is_block and _HELP_KEYWORD_RE.search(preceding.text)):
                doc = preceding.text
            trailing = comments_by_start_line.get(node.extent.end_line)
            if doc is None and trailing is not None and trailing.extent.start_offset >= node.extent.end_offset:
                doc = trailing.text
            if doc is None:
                doc = help_text.get(node.name.lower())
            if doc is None:
                attribute = node.attribute("Parameter")
                if attribute is not None:
                    doc = attribute.named_arguments.get("helpmessage")
            node.documentation = doc.strip() if doc else None

    @staticmethod
    def _help_parameters(comments: list[Comment]) -> dict[str, str]:
        """Map parameter name to its ``.PARAMETER`` comment-based help text."""
        found: dict[str, str] = {}
        for comment in comments:
            if not comment.is_block:
                continue
            body = comment.text
            for match in _HELP_PARAMETER_RE.finditer(body):
                following = _HELP_KEYWORD_RE.search(body, match.end())
                end = following.start() if following else len(body)
                text = body[match.end():end].replace("#>", "").strip()
                found.setdefault(match.group(1).lower(), text or match.group(0).strip())
        return found


def parse_script(text: str, path: str = "") -> SyntaxTree:
    """Parse PowerShell ``text``. Raises ``ScriptParseError`` on malformed input."""
    try:
        tree = Parser(text, path).parse()
    except RecursionError as e:
        raise ScriptParseError("Expression nested too deeply to parse") from e
    logger.debug("Parsed %s: %d top-level statements", path or "<string>", len(tree.root.statements))
    return tree


def read_script(path: Union[str, Path]) -> str:
    """Read a script, honouring UTF-8 and UTF-16 byte order marks."""
    raw = Path(path).read_bytes()
    if raw.startswith((b"\xff\xfe", b"\xfe\xff")):
        return raw.decode("utf-16", errors="replace")
    return raw.decode("utf-8-sig", errors="replace")


def parse_file(path: Union[str, Path]) -> SyntaxTree:
    return parse_script(read_script(path), str(path))
