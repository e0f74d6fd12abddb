"""Tests for the PowerShell parser and the syntax tree it builds."""

from pathlib import Path

import pytest

from fasguard.scanner.ps_ast import (
    Assignment,
    CommandInvocation,
    Expression,
    MemberInvocation,
    NodeKind,
    ParameterDeclaration,
    Pipeline,
    ScriptBlock,
    StringLiteral,
    TryBlock,
    Variable,
)
from fasguard.scanner.ps_lexer import ScriptParseError
from fasguard.scanner.ps_parser import parse_file, parse_script

FIXTURES = Path(__file__).parent / "fixtures"


def _first(text):
    return parse_script(text).root.statements[0]


class TestAssignments:
    def test_string_assignment(self):
        node = _first('$password = "MyPassword123"')
        assert isinstance(node, Assignment)
        assert node.variable_name == "password"
        assert node.operator == "="
        assert isinstance(node.value, StringLiteral)
        assert node.value.value == "MyPassword123"
        assert node.value.quote == "double"

    def test_command_assignment(self):
        node = _first("$user = Get-ADUser -Identity svc-fas")
        assert isinstance(node, Assignment)
        assert isinstance(node.value, CommandInvocation)
        assert node.value.name == "Get-ADUser"

    def test_typed_assignment_target(self):
        node = _first("[string]$name = 'fas01'")
        assert isinstance(node, Assignment)
        assert node.variable_name == "name"

    def test_compound_operator(self):
        node = _first("$count += 1")
        assert node.operator == "+="


class TestCommands:
    def test_named_and_switch_parameters(self):
        node = _first("Get-ChildItem -Path C:\\scripts -Recurse -Filter '*.ps1'")
        assert isinstance(node, CommandInvocation)
        assert node.name == "Get-ChildItem"
        path = node.parameter_argument("Path")
        assert isinstance(path, StringLiteral)
        assert path.value == "C:\\scripts"
        assert node.has_parameter("Recurse")
        assert node.parameter("Recurse").argument is None
        assert node.parameter_argument("Filter").value == "*.ps1"

    def test_parameter_prefix_match(self):
        node = _first("Get-ChildItem -Rec")
        assert node.has_parameter("Recurse")

    def test_positional_arguments(self):
        node = _first("Write-Output hello world")
        assert [a.value for a in node.positional_arguments] == ["hello", "world"]

    def test_argument_prefers_named(self):
        node = _first("ConvertTo-SecureString -String $plain -AsPlainText -Force")
        argument = node.argument(("String",), 0)
        assert isinstance(argument, Variable)
        assert argument.name == "plain"

    def test_colon_bound_switch(self):
        node = _first("Remove-Item x.tmp -Confirm:$false")
        param = node.parameter("Confirm")
        assert param.colon_bound is True
        assert isinstance(param.argument, Variable)

    def test_call_operator(self):
        node = _first("& $tool --version")
        assert isinstance(node, CommandInvocation)
        assert node.invocation_operator == "&"

    def test_comma_argument_is_array(self):
        node = _first("New-Object PSCredential -ArgumentList $user, $pass")
        argument = node.parameter_argument("ArgumentList")
        assert isinstance(argument, Expression)
        assert argument.expression_type == "array"
        assert len(argument.children) == 2


class TestPipelines:
    def test_pipeline_elements(self):
        node = _first("Get-Content setup.ps1 | Invoke-Expression")
        assert isinstance(node, Pipeline)
        assert [e.name for e in node.elements] == ["Get-Content", "Invoke-Expression"]

    def test_single_command_is_not_a_pipeline(self):
        assert isinstance(_first("Get-Date"), CommandInvocation)

    def test_multiline_pipeline(self):
        node = _first("Get-Service |\n  Where-Object Status -eq 'Running'")
        assert isinstance(node, Pipeline)
        assert len(node.elements) == 2


class TestExpressions:
    def test_static_method_call(self):
        node = _first("[scriptblock]::Create($code)")
        assert isinstance(node, MemberInvocation)
        assert node.is_static is True
        assert node.member == "Create"
        assert isinstance(node.target, Expression)
        assert node.target.expression_type == "type_literal"
        assert node.target.type_name == "scriptblock"
        assert isinstance(node.arguments[0], Variable)

    def test_instance_method_call(self):
        node = _first('(New-Object Net.WebClient).DownloadString("https://example.com/a.ps1")')
        assert isinstance(node, MemberInvocation)
        assert node.is_static is False
        assert node.member_lower == "downloadstring"
        assert node.arguments[0].value == "https://example.com/a.ps1"

    def test_member_access_is_not_invocation(self):
        node = _first("$cred.Password")
        assert isinstance(node, Expression)
        assert node.expression_type == "member_access"
        assert node.member == "Password"

    def test_cast(self):
        node = _first("[int]$value")
        assert node.expression_type == "cast"
        assert node.type_name == "int"

    def test_binary_operator(self):
        node = _first("$UserDomain -ne $FasDomain")
        assert node.expression_type == "binary"
        assert node.operator == "-ne"

    def test_hashtable(self):
        node = _first('$h = @{ Name = "svc"; Enabled = $true }')
        assert isinstance(node, Assignment)
        assert node.value.expression_type == "hashtable"

    def test_script_block_literal(self):
        node = _first("$sb = { Get-Date }")
        assert isinstance(node.value, ScriptBlock)
        assert node.value.statements[0].name == "Get-Date"


class TestParameters:
    SCRIPT = (
        "param(\n"
        "    # Group allowed to request certificates\n"
        "    [Parameter(Mandatory = $true, HelpMessage = 'FAS users group')]\n"
        "    [ValidatePattern('^S-1-')]\n"
        "    [string]$FasGroupSid = 'S-1-5-21-1-2-3-4',\n"
        "    [switch]$Force\n"
        ")\n"
    )

    def test_declarations(self):
        tree = parse_script(self.SCRIPT)
        params = tree.root.parameters
        assert [p.name for p in params] == ["FasGroupSid", "Force"]
        assert params[0].type_name == "string"
        assert params[1].type_name == "switch"

    def test_attributes(self):
        param = parse_script(self.SCRIPT).root.parameters[0]
        assert param.has_attribute("ValidatePattern")
        mandatory = param.attribute("Parameter")
        assert mandatory.named_arguments["mandatory"] == "$true"
        assert mandatory.named_arguments["helpmessage"] == "FAS users group"
        assert param.attribute("ValidatePattern").positional_arguments == ["^S-1-"]

    def test_default_value(self):
        param = parse_script(self.SCRIPT).root.parameters[0]
        assert isinstance(param.default, StringLiteral)
        assert param.default.value == "S-1-5-21-1-2-3-4"

    def test_preceding_comment_documents_parameter(self):
        param = parse_script(self.SCRIPT).root.parameters[0]
        assert param.documentation == "# Group allowed to request certificates"

    def test_help_message_documents_parameter(self):
        tree = parse_script("param([Parameter(HelpMessage = 'Target domain')][string]$UserDomain)")
        assert tree.root.parameters[0].documentation == "Target domain"

    def test_comment_based_help(self):
        text = (
            "<#\n.SYNOPSIS\n    Configure FAS.\n.PARAMETER CaServer\n    Issuing CA host name.\n#>\n"
            "param([string]$CaServer)\n"
        )
        param = parse_script(text).root.parameters[0]
        assert param.documentation == "Issuing CA host name."

    def test_undocumented_parameter(self):
        param = parse_script("param([string]$Name)").root.parameters[0]
        assert param.documentation is None

    def test_cmdletbinding_before_param(self):
        tree = parse_script("[CmdletBinding()]\nparam([string]$Name)\nWrite-Output $Name")
        assert tree.root.attributes[0].name == "CmdletBinding"
        assert len(tree.root.parameters) == 1
        assert len(tree.root.statements) == 1

    def test_function_parameters(self):
        func = _first("function Get-Thing {\n  param([string]$Name)\n  Get-Item $Name\n}")
        assert isinstance(func, ScriptBlock)
        assert func.function_name == "Get-Thing"
        assert [p.name for p in func.parameters] == ["Name"]
        assert isinstance(func.parameters[0], ParameterDeclaration)


class TestControlFlow:
    def test_try_catch_finally(self):
        node = _first(
            "try {\n  Get-ADUser -Identity x\n}\ncatch {\n  Write-Warning 'failed'\n}\nfinally {\n  Remove-Item t.tmp\n}"
        )
        assert isinstance(node, TryBlock)
        assert node.body.statements[0].name == "Get-ADUser"
        assert len(node.catch_blocks) == 1
        assert node.catch_blocks[0].named_block == "catch"
        assert node.finally_block is not None

    def test_typed_catch(self):
        node = _first("try { Get-Item x } catch [System.IO.IOException] { 'io' } catch { 'other' }")
        assert len(node.catch_blocks) == 2

    def test_if_else(self):
        node = _first("if ($a) { 'yes' } elseif ($b) { 'maybe' } else { 'no' }")
        assert node.expression_type == "keyword_statement"
        assert node.operator == "if"

    def test_foreach(self):
        node = _first("foreach ($server in $servers) { Restart-Service -Name CitrixFas }")
        assert node.operator == "foreach"

    def test_statements_in_order(self):
        tree = parse_script("Get-Date\n$x = 1; Write-Output $x\n")
        assert [s.kind for s in tree.root.statements] == [
            NodeKind.COMMAND_INVOCATION,
            NodeKind.ASSIGNMENT,
            NodeKind.COMMAND_INVOCATION,
        ]


class TestSourceRanges:
    def test_line_and_column(self):
        node = _first("\n\n  Invoke-Expression $x")
        assert node.extent.start_line == 3
        assert node.extent.start_column == 3
        assert str(node.extent) == "3:3"

    def test_text_matches_extent(self):
        tree = parse_script("$a = 'one'\n$b = 'two'")
        second = tree.root.statements[1]
        assert tree.text_of(second.extent) == second.text == "$b = 'two'"

    def test_parent_links(self):
        tree = parse_script("$password = 'Secret123!'")
        literal = tree.root.statements[0].value
        assert literal.parent is tree.root.statements[0]
        assert tree.root in list(literal.ancestors())


class TestMalformedInput:
    def test_try_without_catch(self):
        with pytest.raises(ScriptParseError, match="catch or finally"):
            parse_script("try { Get-Date }")

    def test_unclosed_block(self):
        with pytest.raises(ScriptParseError):
            parse_script("if ($x) { Write-Output 1")

    def test_stray_closer(self):
        with pytest.raises(ScriptParseError):
            parse_script("Write-Output 1 }")

    def test_error_carries_location(self):
        with pytest.raises(ScriptParseError) as exc:
            parse_script("$ok = 1\n$bad = (1 + ")
        assert exc.value.line == 2

    def test_nesting_limit(self):
        with pytest.raises(ScriptParseError, match="Nesting deeper than 64 levels"):
            parse_script("$x = " + "(" * 3000 + "1" + ")" * 3000)

    def test_nested_blocks_count_toward_limit(self):
        with pytest.raises(ScriptParseError, match="Nesting deeper than"):
            parse_script("if ($a) { " * 100 + "Get-Date" + " }" * 100)

    def test_moderate_nesting_parses(self):
        tree = parse_script("$x = " + "(" * 30 + "1" + ")" * 30)
        assert tree.root.statements[0].variable_name == "x"


class TestFiles:
    def test_parse_fixture(self):
        tree = parse_file(FIXTURES / "clean_fas" / "Set-FasRules.ps1")
        assert tree.path.endswith("Set-FasRules.ps1")
        assert len(tree.root.parameters) == 2

    def test_utf16_with_bom(self, tmp_path: Path):
        script = tmp_path / "unicode.ps1"
        script.write_bytes("$greeting = 'Grüße'\n".encode("utf-16"))
        tree = parse_file(script)
        assert tree.root.statements[0].value.value == "Grüße"

    def test_utf8_bom_is_stripped(self, tmp_path: Path):
        script = tmp_path / "bom.ps1"
        script.write_bytes(b"\xef\xbb\xbfGet-Date\n")
        tree = parse_file(script)
        assert tree.root.statements[0].name == "Get-Date"

    def test_unterminated_fixture_raises(self):
        with pytest.raises(ScriptParseError):
            parse_file(FIXTURES / "broken" / "Unterminated.ps1")

    def test_parsing_is_deterministic(self):
        text = (FIXTURES / "risky_fas" / "Deploy-Fas.ps1").read_text(encoding="utf-8")
        first = [(n.kind, n.extent) for n in parse_script(text).root.walk()]
        second = [(n.kind, n.extent) for n in parse_script(text).root.walk()]
        assert first == second
