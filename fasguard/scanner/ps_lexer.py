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

"""Tokenizer for PowerShell script text.

Best-effort: it covers the syntax found in deployment and configuration
scripts (commands, parameters, variables, strings and here-strings,
comments, type literals, operators) and rejects input it cannot delimit,
such as unterminated strings, here-strings and block comments.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fasguard.scanner.ps_ast import Comment, SourceMap

logger = logging.getLogger(__name__)


class ScriptParseError(ValueError):
    """Raised when a script cannot be tokenized or parsed."""

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        self.message = message
        self.line = line
        self.column = column
        location = f" at line {line}, column {column}" if line is not None else ""
        super().__init__(f"{message}{location}")


class TokenType(str, Enum):
    NEWLINE = "newline"
    SEMI = "semi"
    PIPE = "pipe"
    COMMA = "comma"
    AMPERSAND = "ampersand"
    LPAREN = "lparen"
    RPAREN = "rparen"
    LBRACE = "lbrace"
    RBRACE = "rbrace"
    LBRACKET = "lbracket"
    RBRACKET = "rbracket"
    AT_PAREN = "at_paren"
    AT_BRACE = "at_brace"
    DOLLAR_PAREN = "dollar_paren"
    DOT = "dot"
    DOT_SOURCE = "dot_source"
    DCOLON = "dcolon"
    ASSIGN = "assign"
    OPERATOR = "operator"
    PARAMETER = "parameter"
    VARIABLE = "variable"
    SPLAT = "splat"
    STRING = "string"
    NUMBER = "number"
    WORD = "word"
    REDIRECT = "redirect"
    EOF = "eof"


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str
    start: int
    end: int
    space_before: bool = True
    quote: Optional[str] = None
    has_variables: bool = False
    bound: bool = False

    def is_word(self, *words: str) -> bool:
        return self.type == TokenType.WORD and self.value.lower() in words


SINGLE_QUOTES = "'\u2018\u2019\u201a\u201b"
DOUBLE_QUOTES = '"\u201c\u201d\u201e'
DASHES = "-\u2013\u2014\u2015"
WHITESPACE = " \t\f\v\xa0\ufeff"

_WORD_STOP = set(WHITESPACE + "\r\n(){}[];,|&$=<>") | set(SINGLE_QUOTES) | set(DOUBLE_QUOTES)

_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "0": "\0",
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "e": "\x1b",
}

_IDENT_RE = re.compile(r"\w+")
_VARIABLE_RE = re.compile(r"(?:(?P<scope>[A-Za-z_]\w*):(?=[\w{]))?(?P<name>\w+)")
_PARAMETER_RE = re.compile(r"[A-Za-z_][\w]*")
_NUMBER_RE = re.compile(
    r"(?:0x[0-9a-fA-F]+|\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)[lLdD]?(?:kb|mb|gb|tb|pb|KB|MB|GB|TB|PB)?"
)
_REDIRECT_RE = re.compile(r"[1-6*]?>>?(?:&[12])?|<")
_EXPANSION_RE = re.compile(r"(?<!`)\$(?:[\w{(]|\?|\^)")

# Tokens after which an adjacent '.' is member access.
_MEMBER_TARGETS = {
    TokenType.VARIABLE,
    TokenType.RPAREN,
    TokenType.RBRACKET,
    TokenType.RBRACE,
    TokenType.STRING,
    TokenType.WORD,
}


class Lexer:
    """Single-pass tokenizer producing tokens and comments."""

    def __init__(self, text: str, source_map: Optional[SourceMap] = None) -> None:
        self.text = text
        self.length = len(text)
        self.pos = 0
        self.source_map = source_map or SourceMap(text)
        self.tokens: list[Token] = []
        self.comments: list[Comment] = []
        self._space = True

    # -- helpers -----------------------------------------------------------

    def error(self, message: str, offset: int) -> ScriptParseError:
        line, column = self.source_map.position(min(offset, self.length))
        return ScriptParseError(message, line, column)

    def peek(self, ahead: int = 0) -> str:
        index = self.pos + ahead
        return self.text[index] if index < self.length else ""

    def emit(self, type_: TokenType, value: str, start: int, end: int, **extra) -> None:
        self.tokens.append(Token(type_, value, start, end, space_before=self._space, **extra))
        self._space = False
        self.pos = end

    @property
    def previous(self) -> Optional[Token]:
        return self.tokens[-1] if self.tokens else None

    # -- driver ------------------------------------------------------------

    def tokenize(self) -> list[Token]:
        while self.pos < self.length:
            ch = self.text[self.pos]
            if ch in WHITESPACE:
                self.pos += 1
                self._space = True
            elif ch == "\r":
                if self.peek(1) != "\n":
                    self.emit(TokenType.NEWLINE, "\n", self.pos, self.pos + 1)
                    self._space = True
                else:
                    self.pos += 1
            elif ch == "\n":
                self.emit(TokenType.NEWLINE, "\n", self.pos, self.pos + 1)
                self._space = True
            elif ch == "`" and self.peek(1) in ("\n", "\r"):
                self.pos += 2 if self.peek(1) == "\n" or self.peek(2) != "\n" else 3
                self._space = True
            elif ch == "<" and self.peek(1) == "#":
                self._block_comment()
            elif ch == "#":
                self._line_comment()
            elif ch in SINGLE_QUOTES:
                value, end = self.scan_single(self.pos)
                self.emit(TokenType.STRING, value, self.pos, end, quote="single")
            elif ch in DOUBLE_QUOTES:
                value, end, has_vars = self.scan_double(self.pos)
                self.emit(TokenType.STRING, value, self.pos, end, quote="double", has_variables=has_vars)
            elif ch == "@":
                self._at()
            elif ch == "$":
                self._dollar()
            elif ch in DASHES:
                self._dash()
            elif ch == ".":
                self._dot()
            elif ch.isdigit():
                self._number()
            else:
                self._punctuation(ch)
        self.tokens.append(Token(TokenType.EOF, "", self.length, self.length))
        return self.tokens

    # -- comments ----------------------------------------------------------

    def _line_comment(self) -> None:
        start = self.pos
        end = self.text.find("\n", start)
        if end == -1:
            end = self.length
        text = self.text[start:end].rstrip("\r")
        self.comments.append(Comment(text, self.source_map.range(start, start + len(text))))
        self.pos = end
        self._space = True

    def _block_comment(self) -> None:
        start = self.pos
        end = self.text.find("#>", start + 2)
        if end == -1:
            raise self.error("Unterminated block comment", start)
        end += 2
        self.comments.append(Comment(self.text[start:end], self.source_map.range(start, end), is_block=True))
        self.pos = end
        self._space = True

    # -- strings -----------------------------------------------------------

    def scan_single(self, start: int) -> tuple[str, int]:
        """Scan a single-quoted string starting at ``start``; returns (value, end)."""
        out: list[str] = []
        i = start + 1
        while i < self.length:
            ch = self.text[i]
            if ch in SINGLE_QUOTES:
                if i + 1 < self.length and self.text[i + 1] in SINGLE_QUOTES:
                    out.append("'")
                    i += 2
                    continue
                return "".join(out), i + 1
            out.append(ch)
            i += 1
        raise self.error("Unterminated string literal", start)

    def scan_double(self, start: int) -> tuple[str, int, bool]:
        """Scan a double-quoted string; returns (value, end, has_variables)."""
        out: list[str] = []
        has_vars = False
        i = start + 1
        while i < self.length:
            ch = self.text[i]
            if ch == "`" and i + 1 < self.length:
                nxt = self.text[i + 1]
                out.append(_ESCAPES.get(nxt, nxt))
                i += 2
                continue
            if ch in DOUBLE_QUOTES:
                if i + 1 < self.length and self.text[i + 1] in DOUBLE_QUOTES:
                    out.append('"')
                    i += 2
                    continue
                return "".join(out), i + 1, has_vars
            if ch == "$" and i + 1 < self.length:
                nxt = self.text[i + 1]
                if nxt == "(":
                    end = self.skip_subexpression(i + 1)
                    out.append(self.text[i:end])
                    has_vars = True
                    i = end
                    continue
                if nxt.isalnum() or nxt in "_{?^":
                    has_vars = True
            out.append(ch)
            i += 1
        raise self.error("Unterminated string literal", start)

    def skip_subexpression(self, open_paren: int) -> int:
        """Return the offset just past the ')' balancing ``open_paren``."""
        depth = 0
        i = open_paren
        while i < self.length:
            ch = self.text[i]
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth == 0:
                    return i + 1
            elif ch in SINGLE_QUOTES:
                _, i = self.scan_single(i)
                continue
            elif ch in DOUBLE_QUOTES:
                _, i, _ = self.scan_double(i)
                continue
            elif ch == "`":
                i += 1
            i += 1
        raise self.error("Unterminated subexpression", open_paren)

    def _here_string(self, start: int, double: bool) -> None:
        header_end = start + 2
        i = header_end
        while i < self.length and self.text[i] in WHITESPACE:
            i += 1
        if i < self.length and self.text[i] == "\r":
            i += 1
        if i >= self.length or self.text[i] != "\n":
            raise self.error("Here-string header must be followed by a line break", start)
        body_start = i + 1
        closers = DOUBLE_QUOTES if double else SINGLE_QUOTES
        line_start = body_start
        while line_start < self.length:
            if self.text[line_start] in closers and self.text[line_start + 1:line_start + 2] == "@":
                # The line break before the closing quote is not content.
                body_end = max(body_start, line_start - 1)
                if body_end > body_start and self.text[body_end - 1] == "\r":
                    body_end -= 1
                value = self.text[body_start:body_end]
                end = line_start + 2
                if double:
                    self.emit(
                        TokenType.STRING,
                        value,
                        start,
                        end,
                        quote="here_double",
                        has_variables=bool(_EXPANSION_RE.search(value)),
                    )
                else:
                    self.emit(TokenType.STRING, value, start, end, quote="here_single")
                return
            nl = self.text.find("\n", line_start)
            if nl == -1:
                break
            line_start = nl + 1
        raise self.error("Unterminated here-string", start)

    # -- sigils ------------------------------------------------------------

    def _at(self) -> None:
        start = self.pos
        nxt = self.peek(1)
        if nxt in DOUBLE_QUOTES:
            self._here_string(start, double=True)
        elif nxt in SINGLE_QUOTES:
            self._here_string(start, double=False)
        elif nxt == "(":
            self.emit(TokenType.AT_PAREN, "@(", start, start + 2)
        elif nxt == "{":
            self.emit(TokenType.AT_BRACE, "@{", start, start + 2)
        else:
            match = _IDENT_RE.match(self.text, start + 1)
            if match:
                self.emit(TokenType.SPLAT, match.group(0), start, match.end())
            else:
                self.emit(TokenType.WORD, "@", start, start + 1)

    def _dollar(self) -> None:
        start = self.pos
        nxt = self.peek(1)
        if nxt == "(":
            self.emit(TokenType.DOLLAR_PAREN, "$(", start, start + 2)
            return
        if nxt == "{":
            close = self.text.find("}", start + 2)
            if close == -1:
                raise self.error("Unterminated braced variable name", start)
            self.emit(TokenType.VARIABLE, self.text[start + 2:close], start, close + 1)
            return
        if nxt in ("$", "?", "^"):
            self.emit(TokenType.VARIABLE, nxt, start, start + 2)
            return
        match = _VARIABLE_RE.match(self.text, start + 1)
        if match:
            value = match.group(0)
            self.emit(TokenType.VARIABLE, value, start, match.end())
        else:
            self.emit(TokenType.WORD, "$", start, start + 1)

    def _dash(self) -> None:
        start = self.pos
        nxt = self.peek(1)
        if nxt == "=":
            self.emit(TokenType.ASSIGN, "-=", start, start + 2)
            return
        if nxt in DASHES and self._space and self.peek(2) in ("", " ", "\t", "\r", "\n"):
            # '--' on its own ends parameter parsing.
            self.emit(TokenType.WORD, "--", start, start + 2)
            return
        if nxt in DASHES:
            self.emit(TokenType.OPERATOR, "--", start, start + 2)
            return
        match = _PARAMETER_RE.match(self.text, start + 1)
        if match:
            end = match.end()
            bound = False
            if end < self.length and self.text[end] == ":" and self.text[end + 1:end + 2] != ":":
                bound = True
                end += 1
            self.emit(TokenType.PARAMETER, match.group(0), start, end, bound=bound)
            return
        self.emit(TokenType.OPERATOR, "-", start, start + 1)

    def _dot(self) -> None:
        start = self.pos
        prev = self.previous
        adjacent = prev is not None and not self._space
        if self.peek(1) == "." and adjacent:
            self.emit(TokenType.OPERATOR, "..", start, start + 2)
            return
        if adjacent and prev.type in _MEMBER_TARGETS:
            self.emit(TokenType.DOT, ".", start, start + 1)
            return
        if self.peek(1) in ("", " ", "\t", "\r", "\n"):
            self.emit(TokenType.DOT_SOURCE, ".", start, start + 1)
            return
        if adjacent and prev.type == TokenType.NUMBER:
            self.emit(TokenType.DOT, ".", start, start + 1)
            return
        self._word()

    def _number(self) -> None:
        start = self.pos
        redirect = _REDIRECT_RE.match(self.text, start)
        if redirect and self.text[start + 1:start + 2] == ">":
            self.emit(TokenType.REDIRECT, redirect.group(0), start, redirect.end())
            return
        match = _NUMBER_RE.match(self.text, start)
        end = match.end()
        follow = self.text[end:end + 1]
        if follow and (follow.isalnum() or follow in "_\\:" or (follow == "." and self.text[end + 1:end + 2].isdigit())):
            self._word()
            return
        self.emit(TokenType.NUMBER, match.group(0), start, end)

    # -- punctuation and words ---------------------------------------------

    def _punctuation(self, ch: str) -> None:
        start = self.pos
        two = self.text[start:start + 2]
        simple = {
            "(": TokenType.LPAREN,
            ")": TokenType.RPAREN,
            "{": TokenType.LBRACE,
            "}": TokenType.RBRACE,
            "[": TokenType.LBRACKET,
            "]": TokenType.RBRACKET,
            ";": TokenType.SEMI,
            ",": TokenType.COMMA,
        }
        if ch in simple:
            self.emit(simple[ch], ch, start, start + 1)
        elif two == "||" or two == "&&":
            self.emit(TokenType.OPERATOR, two, start, start + 2)
        elif ch == "|":
            self.emit(TokenType.PIPE, ch, start, start + 1)
        elif ch == "&":
            self.emit(TokenType.AMPERSAND, ch, start, start + 1)
        elif two == "::":
            self.emit(TokenType.DCOLON, two, start, start + 2)
        elif ch == "=":
            self.emit(TokenType.ASSIGN, ch, start, start + 1)
        elif two in ("+=", "*=", "/=", "%=", "??"):
            type_ = TokenType.OPERATOR if two == "??" else TokenType.ASSIGN
            self.emit(type_, two, start, start + 2)
        elif two == "++":
            self.emit(TokenType.OPERATOR, two, start, start + 2)
        elif ch in "+/%!":
            self.emit(TokenType.OPERATOR, ch, start, start + 1)
        elif ch == "*":
            redirect = _REDIRECT_RE.match(self.text, start)
            if two == "*>" and redirect:
                self.emit(TokenType.REDIRECT, redirect.group(0), start, redirect.end())
            else:
                self.emit(TokenType.OPERATOR, ch, start, start + 1)
        elif ch in "<>":
            redirect = _REDIRECT_RE.match(self.text, start)
            self.emit(TokenType.REDIRECT, redirect.group(0), start, redirect.end())
        else:
            self._word()

    def _word(self) -> None:
        start = self.pos
        prev = self.previous
        if prev is not None and not self._space and prev.type in (TokenType.DOT, TokenType.DCOLON):
            match = _IDENT_RE.match(self.text, start)
            if match:
                self.emit(TokenType.WORD, match.group(0), start, match.end())
                return
        out: list[str] = []
        i = start
        while i < self.length:
            ch = self.text[i]
            if ch == "`":
                if i + 1 < self.length and self.text[i + 1] not in "\r\n":
                    out.append(self.text[i + 1])
                    i += 2
                    continue
                break
            if ch in _WORD_STOP:
                break
            if ch == ":" and self.text[i + 1:i + 2] == ":":
                break
            out.append(ch)
            i += 1
        if i == start:
            # Lone character with no other meaning.
            out.append(self.text[i])
            i += 1
        self.emit(TokenType.WORD, "".join(out), start, i)


def tokenize(text: str, source_map: Optional[SourceMap] = None) -> tuple[list[Token], list[Comment]]:
    """Tokenize ``text``; returns the token list (ending in EOF) and comments."""
    lexer = Lexer(text, source_map)
    tokens = lexer.tokenize()
    logger.debug("Tokenized %d characters into %d tokens", len(text), len(tokens))
    return tokens, lexer.comments
