"""Tests for EXEC-001 (dynamic code execution)."""

from fasguard.models.findings import Severity
from fasguard.rules.dynamic_execution import check_dynamic_execution
from fasguard.scanner.ps_parser import parse_script


def _check(text):
    return check_dynamic_execution(parse_script(text))


class TestInvokeExpression:
    def test_literal_command(self):
        findings = _check('Invoke-Expression "Get-Process"')
        assert len(findings) == 1
        assert findings[0].rule_id == "EXEC-001"
        assert findings[0].rule_name == "DynamicExecution"
        assert findings[0].severity == Severity.ERROR

    def test_alias(self):
        findings = _check("iex $command")
        assert len(findings) == 1
        assert "variable input" in findings[0].message

    def test_expandable_string_argument(self):
        findings = _check('Invoke-Expression "Set-FasServer -Address $address"')
        assert "variable input" in findings[0].message

    def test_named_command_parameter(self):
        findings = _check("Invoke-Expression -Command $cmd")
        assert len(findings) == 1

    def test_download_through_variable_is_critical(self):
        findings = _check("$code = Invoke-WebRequest https://example.com/setup.ps1\nInvoke-Expression $code")
        assert len(findings) == 1
        assert findings[0].message.startswith("CRITICAL")

    def test_download_string_is_critical(self):
        findings = _check('iex (New-Object Net.WebClient).DownloadString("https://example.com/a.ps1")')
        assert len(findings) == 1
        assert findings[0].message.startswith("CRITICAL")

    def test_download_pipeline(self):
        findings = _check("Invoke-WebRequest -Uri $url -UseBasicParsing | Invoke-Expression")
        # One for the Invoke-Expression call, one for the pipeline as a whole.
        assert len(findings) == 2
        assert all(f.severity == Severity.ERROR for f in findings)
        assert all(f.message.startswith("CRITICAL") for f in findings)

    def test_piped_literal_is_not_variable_input(self):
        findings = _check('"Get-Process" | iex')
        assert len(findings) == 1
        assert "variable input" not in findings[0].message
        assert "call the command directly" in findings[0].message

    def test_piped_variable_is_variable_input(self):
        findings = _check("$command | Invoke-Expression")
        assert len(findings) == 1
        assert "variable input" in findings[0].message

    def test_no_invoke_expression(self):
        assert _check("Get-Process | Where-Object CPU -gt 100") == []


class TestScriptBlocks:
    def test_create_from_variable(self):
        findings = _check("[scriptblock]::Create($code)")
        assert len(findings) == 1
        assert findings[0].severity == Severity.ERROR
        assert "Create()" in findings[0].message

    def test_create_from_literal_is_fine(self):
        assert _check("[scriptblock]::Create('Get-Date')") == []

    def test_new_script_block(self):
        findings = _check("$ExecutionContext.InvokeCommand.NewScriptBlock($text)")
        assert len(findings) == 1

    def test_invoke_built_block(self):
        findings = _check("$sb = [scriptblock]::Create($code)\n$sb.Invoke()")
        assert [f.severity for f in findings] == [Severity.ERROR, Severity.WARNING]

    def test_invoke_literal_block_is_fine(self):
        assert _check("{ Get-Date }.Invoke()") == []

    def test_remote_dynamic_block(self):
        findings = _check("Invoke-Command -ComputerName fas01 -ScriptBlock ([scriptblock]::Create($cmd))")
        assert len(findings) == 2
        assert findings[1].severity == Severity.WARNING
        assert "Invoke-Command" in findings[1].message

    def test_remote_literal_block_is_fine(self):
        assert _check("Invoke-Command -ComputerName fas01 -ScriptBlock { Get-Service CitrixFas }") == []

    def test_start_job_with_built_block(self):
        findings = _check("$job = [scriptblock]::Create($text)\nStart-Job -ScriptBlock $job")
        assert len(findings) == 2


class TestAddType:
    def test_variable_definition(self):
        findings = _check("Add-Type -TypeDefinition $source")
        assert len(findings) == 1
        assert findings[0].severity == Severity.WARNING

    def test_literal_definition_is_fine(self):
        assert _check("Add-Type -TypeDefinition 'public class Helper { }'") == []

    def test_assembly_name_is_fine(self):
        assert _check("Add-Type -AssemblyName System.Web") == []


class TestRuleProperties:
    def test_deterministic(self):
        tree = parse_script("iex $a\n[scriptblock]::Create($b)\nAdd-Type -TypeDefinition $c")
        first = check_dynamic_execution(tree)
        assert first == check_dynamic_execution(tree)
        assert len(first) == 3
