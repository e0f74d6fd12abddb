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

"""Rich terminal output for lint results.

One header panel, then one findings table per script that has something
to say, then a summary panel with counts by severity. Messages are passed
as ``Text`` so PowerShell type names like ``[SecureString]`` are never
read as console markup.
"""

from __future__ import annotations

from typing import Any, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from fasguard.models.findings import Severity
from fasguard.models.report import ScanReport, ScriptReport
from fasguard.models.settings import RuleSettings
from fasguard.rules.registry import RuleInfo
from fasguard.scanner.ps_ast import SyntaxTree


def _make_console() -> Console:
    """Console with soft wrap. No fixed width; follows the live terminal size."""
    return Console(soft_wrap=True)


console = _make_console()


def _ascii_safe(text: str) -> str:
    """Return text safe for legacy Windows terminals."""
    if not text:
        return ""
    normalized = (
        text.replace("→", "->")
        .replace("—", "-")
        .replace("–", "-")
        .replace("…", "...")
        .replace(" ", " ")
    )
    return normalized.encode("ascii", "replace").decode("ascii")


def _safe_print(*args: Any, **kwargs: Any) -> None:
    """Print with folding instead of cropping."""
    kwargs.setdefault("crop", False)
    kwargs.setdefault("overflow", "fold")
    console.print(*args, **kwargs)


# ── Severity display ──

ICON_PASS = "[bold green][OK][/bold green]"

SEVERITY_STYLE = {
    Severity.ERROR: "bold red",
    Severity.WARNING: "bold yellow",
    Severity.INFORMATION: "bold blue",
}


def _severity_text(severity: Severity) -> Text:
    return Text(severity.value, style=SEVERITY_STYLE[severity])


# ── Print functions ──


def print_scan_header(target: str, script_count: int, discovery: str, settings_source: str) -> None:
    header = Text()
    header.append("FASGUARD POWERSHELL LINT\n", style="bold cyan")
    header.append(f"  Target:   {_ascii_safe(target)}\n", style="white")
    header.append(f"  Scripts:  {script_count}\n", style="white")
    header.append(f"  Source:   {_ascii_safe(discovery)}\n", style="dim")
    header.append(f"  Settings: {_ascii_safe(settings_source)}", style="dim")

    _safe_print(
        Panel(
            header,
            border_style="white",
            title="[bold]fasguard[/bold]",
            title_align="left",
            expand=True,
            safe_box=True,
        )
    )


def print_script_findings(script: ScriptReport, verbose: bool = False) -> None:
    """Print the findings table (or parse error) for one script."""
    path = _ascii_safe(script.script_path)

    if script.parse_error:
        _safe_print(
            Panel(
                Text(f"  Not analysed: {script.parse_error}"),
                border_style="red",
                title=f"[bold red]{path}[/bold red]",
                title_align="left",
                expand=True,
                safe_box=True,
            )
        )
        return

    if script.rule_errors:
        _safe_print(
            Text(
                f"  {script.script_path}: rule(s) failed and were skipped: {', '.join(script.rule_errors)}",
                style="yellow",
            )
        )

    if not script.findings:
        if verbose:
            _safe_print(f"  {ICON_PASS}  {path}")
        return

    table = Table(
        show_header=True,
        header_style="bold yellow",
        border_style="dim",
        expand=True,
        title=Text(path, style="bold white"),
        title_justify="left",
    )
    table.add_column("Severity", min_width=11)
    table.add_column("Rule", style="cyan", min_width=8)
    table.add_column("Line", style="dim", justify="right", min_width=7)
    table.add_column("Message", style="white", ratio=1, overflow="fold")
    if verbose:
        table.add_column("Name", style="dim", min_width=10)

    for finding in script.findings:
        row = [
            _severity_text(finding.severity),
            finding.rule_id,
            str(finding.source_range),
            Text(_ascii_safe(finding.message)),
        ]
        if verbose:
            row.append(finding.rule_name)
        table.add_row(*row)

    _safe_print(table)


def print_summary(report: ScanReport, report_path: Optional[str] = None) -> None:
    """Print the closing summary with counts by severity."""
    summary = report.summary
    parse_failures = sum(1 for s in report.scripts if s.parse_error)

    lines = [
        f"  Scripts scanned: {len(report.scripts)}",
        f"  [bold red]Errors:[/bold red]       {summary.Error}",
        f"  [bold yellow]Warnings:[/bold yellow]     {summary.Warning}",
        f"  [bold blue]Information:[/bold blue]  {summary.Information}",
    ]
    if parse_failures:
        lines.append(f"  [red]Not parsed:[/red]   {parse_failures}")
    if report_path:
        lines.append("")
        lines.append(f"  Report: [white]{_ascii_safe(report_path)}[/white]")

    if summary.Error:
        border = "red"
    elif summary.Warning:
        border = "yellow"
    else:
        border = "green"
        lines.insert(0, f"  {ICON_PASS}  No errors found.\n")

    _safe_print()
    _safe_print(
        Panel(
            "\n".join(lines),
            border_style=border,
            title=f"[bold {border}]Summary[/bold {border}]",
            title_align="left",
            expand=True,
            safe_box=True,
        )
    )


def print_report(report: ScanReport, verbose: bool = False, report_path: Optional[str] = None) -> None:
    print_scan_header(report.scan_target, len(report.scripts), report.discovery_source, report.settings_source)
    for script in report.scripts:
        print_script_findings(script, verbose=verbose)
    print_summary(report, report_path)


def print_rules_table(rules: tuple[RuleInfo, ...], settings: RuleSettings) -> None:
    table = Table(show_header=True, header_style="bold cyan", border_style="dim", expand=True)
    table.add_column("Rule", style="cyan", min_width=8)
    table.add_column("Name", style="white", min_width=12)
    table.add_column("Severity", min_width=11)
    table.add_column("Enabled", justify="center", min_width=7)
    table.add_column("Description", style="dim", ratio=1, overflow="fold")

    for rule in rules:
        severity = settings.severity_for(rule.id, rule.severity)
        enabled = settings.is_enabled(rule.id)
        table.add_row(
            rule.id,
            rule.name,
            _severity_text(severity),
            Text("yes", style="green") if enabled else Text("no", style="dim"),
            Text(rule.description),
        )

    _safe_print(table)


def print_parse_outline(tree: SyntaxTree, max_text: int = 60) -> None:
    """Indented node outline, for inspecting what the rules will see."""
    stack = [(tree.root, 0)]
    while stack:
        node, depth = stack.pop()
        snippet = " ".join(node.text.split())
        if len(snippet) > max_text:
            snippet = snippet[: max_text - 3] + "..."
        line = Text("  " * depth)
        line.append(node.kind.value, style="cyan")
        line.append(f" {node.extent}", style="dim")
        line.append(f"  {_ascii_safe(snippet)}")
        _safe_print(line)
        stack.extend((child, depth + 1) for child in reversed(node.children))
