"""Tests for the PowerShell tokenizer."""

import pytest

from fasguard.scanner.ps_lexer import ScriptParseError, TokenType, tokenize


def _types(text):
    tokens, _ = tokenize(text)
    return [t.type for t in tokens]


class TestBasicTokens:
    def test_assignment(self):
        assert _types("$x = 'abc'") == [
            TokenType.VARIABLE,
            TokenType.ASSIGN,
            TokenType.STRING,
            TokenType.EOF,
        ]

    def test_command_name_is_one_word(self):
        tokens, _ = tokenize("Get-Process")
        assert tokens[0].type == TokenType.WORD
        assert tokens[0].value == "Get-Process"

    def test_parameter(self):
        tokens, _ = tokenize("Get-Item -Path C:\\temp")
        assert tokens[1].type == TokenType.PARAMETER
        assert tokens[1].value == "Path"
        assert tokens[1].bound is False
        assert tokens[2].value == "C:\\temp"

    def test_colon_bound_parameter(self):
        tokens, _ = tokenize("Get-ChildItem -Recurse:$false")
        assert tokens[1].type == TokenType.PARAMETER
        assert tokens[1].bound is True

    def test_scoped_variable(self):
        tokens, _ = tokenize("$env:USERNAME")
        assert tokens[0].type == TokenType.VARIABLE
        assert tokens[0].value == "env:USERNAME"

    def test_member_access(self):
        assert _types("$obj.Name")[:3] == [TokenType.VARIABLE, TokenType.DOT, TokenType.WORD]

    def test_static_member(self):
        assert _types("[scriptblock]::Create")[:5] == [
            TokenType.LBRACKET,
            TokenType.WORD,
            TokenType.RBRACKET,
            TokenType.DCOLON,
            TokenType.WORD,
        ]

    def test_newline_token(self):
        assert TokenType.NEWLINE in _types("$a = 1\n$b = 2")

    def test_line_continuation_is_not_a_newline(self):
        assert TokenType.NEWLINE not in _types("Get-Item `\n  -Path x")


class TestStrings:
    def test_single_quote_escape(self):
        tokens, _ = tokenize("'it''s'")
        assert tokens[0].value == "it's"
        assert tokens[0].quote == "single"

    def test_double_quoted_variable_expansion(self):
        tokens, _ = tokenize('"Hello $name"')
        assert tokens[0].has_variables is True

    def test_escaped_dollar_does_not_expand(self):
        tokens, _ = tokenize('"Costs `$5"')
        assert tokens[0].value == "Costs $5"
        assert tokens[0].has_variables is False

    def test_subexpression_in_string(self):
        tokens, _ = tokenize('"Count: $($items.Count)"')
        assert tokens[0].has_variables is True
        assert len(tokens) == 2

    def test_smart_quotes(self):
        tokens, _ = tokenize("\u2018abc\u2019")
        assert tokens[0].type == TokenType.STRING
        assert tokens[0].value == "abc"

    def test_here_string(self):
        tokens, _ = tokenize('@"\nline one\n$var\n"@')
        assert tokens[0].quote == "here_double"
        assert tokens[0].value == "line one\n$var"
        assert tokens[0].has_variables is True

    def test_single_here_string_is_literal(self):
        tokens, _ = tokenize("@'\n$notavariable\n'@")
        assert tokens[0].quote == "here_single"
        assert tokens[0].has_variables is False


class TestComments:
    def test_line_and_block_comments_collected(self):
        _, comments = tokenize("# hello\n<# block\ncomment #>\n$x = 1")
        assert len(comments) == 2
        assert comments[0].text == "# hello"
        assert comments[1].is_block is True

    def test_comments_are_not_tokens(self):
        assert _types("# just a comment") == [TokenType.EOF]


class TestErrors:
    def test_unterminated_string(self):
        with pytest.raises(ScriptParseError) as exc:
            tokenize("$a = 1\n$b = 'oops")
        assert exc.value.line == 2
        assert exc.value.column == 6

    def test_unterminated_block_comment(self):
        with pytest.raises(ScriptParseError, match="block comment"):
            tokenize("<# never closed")

    def test_unterminated_here_string(self):
        with pytest.raises(ScriptParseError, match="here-string"):
            tokenize('@"\nno closer')

    def test_parse_error_is_value_error(self):
        assert issubclass(ScriptParseError, ValueError)
