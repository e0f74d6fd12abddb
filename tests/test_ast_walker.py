"""Tests for tree traversal helpers and node classification."""

import pytest

from fasguard.scanner.ast_walker import (
    assignments_by_variable,
    classify,
    command_named,
    enclosing,
    find_all,
    hashtable_entries,
    is_inside_try,
    member_named,
    of_kind,
    pipeline_position,
    upstream_elements,
    variables_in,
)
from fasguard.scanner.ps_ast import NODE_CLASSES, NodeKind
from fasguard.scanner.ps_parser import parse_script

SCRIPT = """\
param([string]$Name)
$password = "Secret12345"
try {
    Get-ADUser -Identity $Name
}
catch {
    Get-ADGroup -Identity fas-users
}
Get-ADComputer -Identity fas01
"""


class TestFindAll:
    def test_of_kind(self):
        tree = parse_script(SCRIPT)
        assignments = find_all(tree, of_kind(NodeKind.ASSIGNMENT))
        assert len(assignments) == 1
        assert assignments[0].variable_name == "password"

    def test_multiple_kinds(self):
        tree = parse_script(SCRIPT)
        nodes = find_all(tree, of_kind(NodeKind.TRY_BLOCK, NodeKind.PARAMETER_DECLARATION))
        assert [n.kind for n in nodes] == [NodeKind.PARAMETER_DECLARATION, NodeKind.TRY_BLOCK]

    def test_source_order(self):
        tree = parse_script(SCRIPT)
        commands = find_all(tree, of_kind(NodeKind.COMMAND_INVOCATION))
        assert [c.name for c in commands] == ["Get-ADUser", "Get-ADGroup", "Get-ADComputer"]

    def test_repeatable(self):
        tree = parse_script(SCRIPT)
        predicate = of_kind(NodeKind.STRING_LITERAL)
        assert find_all(tree, predicate) == find_all(tree, predicate)

    def test_from_subtree(self):
        tree = parse_script(SCRIPT)
        try_block = find_all(tree, of_kind(NodeKind.TRY_BLOCK))[0]
        commands = find_all(try_block, of_kind(NodeKind.COMMAND_INVOCATION))
        assert len(commands) == 2

    def test_command_named_is_case_insensitive(self):
        tree = parse_script("IEX $a\niex $b\nInvoke-Expression $c")
        assert len(find_all(tree, command_named("iex", "Invoke-Expression"))) == 3

    def test_member_named(self):
        tree = parse_script("$wc.DownloadString($url)\n$sb.Invoke()")
        found = find_all(tree, member_named("downloadstring"))
        assert len(found) == 1
        assert found[0].member == "DownloadString"


class TestAncestry:
    def test_try_body(self):
        tree = parse_script(SCRIPT)
        command = find_all(tree, command_named("Get-ADUser"))[0]
        assert is_inside_try(command) is True

    def test_catch_block_is_not_guarded(self):
        tree = parse_script(SCRIPT)
        command = find_all(tree, command_named("Get-ADGroup"))[0]
        assert is_inside_try(command) is False

    def test_outside_try(self):
        tree = parse_script(SCRIPT)
        command = find_all(tree, command_named("Get-ADComputer"))[0]
        assert is_inside_try(command) is False

    def test_nested_script_block_in_try(self):
        tree = parse_script("try { if ($x) { Get-ADUser -Identity a } } catch { }")
        command = find_all(tree, command_named("Get-ADUser"))[0]
        assert is_inside_try(command) is True

    def test_enclosing(self):
        tree = parse_script("param([string]$Sid = 'S-1-5-18')")
        literal = find_all(tree, of_kind(NodeKind.STRING_LITERAL))[0]
        parameter = enclosing(literal, NodeKind.PARAMETER_DECLARATION)
        assert parameter is not None
        assert parameter.name == "Sid"
        assert enclosing(literal, NodeKind.TRY_BLOCK) is None


class TestPipelinePosition:
    def test_upstream(self):
        tree = parse_script("Invoke-WebRequest $url | Select-Object -Expand Content | Invoke-Expression")
        iex = find_all(tree, command_named("Invoke-Expression"))[0]
        pipeline, index = pipeline_position(iex)
        assert index == 2
        assert [e.name for e in upstream_elements(iex)] == ["Invoke-WebRequest", "Select-Object"]
        assert pipeline.elements[index] is iex

    def test_not_in_pipeline(self):
        tree = parse_script("Invoke-Expression $x")
        iex = find_all(tree, command_named("Invoke-Expression"))[0]
        assert pipeline_position(iex) == (None, -1)
        assert upstream_elements(iex) == []


class TestVariableHelpers:
    def test_variables_in(self):
        tree = parse_script('Set-FasServer -Address $address -Port $port')
        command = find_all(tree, command_named("Set-FasServer"))[0]
        assert [v.name for v in variables_in(command)] == ["address", "port"]
        assert variables_in(None) == []

    def test_assignments_by_variable(self):
        tree = parse_script("$Code = 'a'\n$code += 'b'\n$other = 1")
        index = assignments_by_variable(tree)
        assert sorted(index) == ["code", "other"]
        assert [a.operator for a in index["code"]] == ["=", "+="]


class TestHashtableEntries:
    def test_pairs(self):
        tree = parse_script('$h = @{ UserName = "svc"; Password = $secret }')
        table = find_all(tree, of_kind(NodeKind.ASSIGNMENT))[0].value
        entries = hashtable_entries(table)
        assert [key.text for key, _ in entries] == ["UserName", "Password"]
        assert [value.text for _, value in entries] == ['"svc"', "$secret"]

    def test_not_a_hashtable(self):
        tree = parse_script("$x = @(1, 2)")
        assert hashtable_entries(find_all(tree, of_kind(NodeKind.ASSIGNMENT))[0].value) == []


class TestClassify:
    @pytest.mark.parametrize(
        "kind, category",
        [
            (NodeKind.ASSIGNMENT, "assignment"),
            (NodeKind.STRING_LITERAL, "literal"),
            (NodeKind.COMMAND_INVOCATION, "command"),
            (NodeKind.MEMBER_INVOCATION, "member"),
            (NodeKind.PARAMETER_DECLARATION, "parameter"),
            (NodeKind.TRY_BLOCK, "try"),
        ],
    )
    def test_rule_facing_kinds(self, kind, category):
        tree = parse_script(SCRIPT + "[scriptblock]::Create($x)\n")
        node = find_all(tree, of_kind(kind))[0]
        assert classify(node) == category

    def test_every_kind_is_covered(self):
        tree = parse_script(SCRIPT + "$a | Out-Null\n")
        for node in tree.root.walk():
            assert classify(node) in {"assignment", "literal", "command", "member", "parameter", "try", "structure"}
        assert set(NODE_CLASSES) == set(NodeKind)

    def test_unknown_node_raises(self):
        with pytest.raises(TypeError, match="Unknown node kind"):
            classify(object())
