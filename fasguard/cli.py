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

"""fasguard CLI: Typer entry point.

Commands:
- fasguard scan [PATH]   Lint PowerShell scripts under PATH
- fasguard rules         List the rules and whether they are enabled
- fasguard parse FILE    Print the parsed node outline of one script
- fasguard version       Show the version
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.markup import escape

from fasguard import __version__
from fasguard.policy.rule_engine import (
    SettingsError,
    apply_overrides,
    resolve_settings,
    scan_path,
)
from fasguard.reporter.console_out import (
    console,
    print_parse_outline,
    print_report,
    print_rules_table,
)
from fasguard.reporter.json_out import to_canonical_json, write_report
from fasguard.rules.registry import RULES
from fasguard.scanner.ps_lexer import ScriptParseError
from fasguard.scanner.ps_parser import parse_file

app = typer.Typer(
    name="fasguard",
    help=(
        "fasguard: static analysis for Citrix FAS PowerShell automation. "
        "Run 'fasguard <command> --help' for flags (e.g. fasguard scan --help for --json, -r, -x)."
    ),
    add_completion=False,
)

logger = logging.getLogger("fasguard")

EXIT_FINDINGS = 1
EXIT_USAGE = 2


def _configure_logging(verbose: bool, quiet: bool) -> None:
    if quiet:
        logging.basicConfig(level=logging.ERROR)
    elif verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


def _settings_or_exit(
    settings_path: Optional[str],
    target: Optional[Path],
    min_severity: Optional[str] = None,
    include_rules: Optional[List[str]] = None,
    exclude_rules: Optional[List[str]] = None,
):
    try:
        settings, source = resolve_settings(settings_path, target)
        settings = apply_overrides(settings, min_severity, include_rules, exclude_rules)
    except SettingsError as e:
        console.print(f"[red]Settings error:[/red] {escape(str(e))}", highlight=False)
        raise typer.Exit(code=EXIT_USAGE)
    return settings, source


@app.command()
def scan(
    path: str = typer.Argument(".", help="Script or directory to scan (default: current directory)"),
    settings_path: Optional[str] = typer.Option(None, "--settings", help="Path to a YAML settings file"),
    min_severity: Optional[str] = typer.Option(
        None, "--min-severity", help="Lowest severity to report: Error, Warning or Information"
    ),
    include_rules: Optional[List[str]] = typer.Option(
        None, "--include-rule", "-r", help="Only run this rule id (repeatable)"
    ),
    exclude_rules: Optional[List[str]] = typer.Option(
        None, "--exclude-rule", "-x", help="Skip this rule id (repeatable)"
    ),
    output_json: bool = typer.Option(False, "--json", help="Output raw JSON to stdout (for CI)"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Also write the JSON report to this file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show clean scripts, rule names and debug logs"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress all output except errors"),
) -> None:
    """Lint PowerShell scripts for credential, execution and AD issues.

    Exits 1 when any Error finding is reported, 2 on a bad path or settings.
    """
    _configure_logging(verbose, quiet)

    target = Path(path)
    if not target.exists():
        console.print(f"[red]Error: Path not found: {target.resolve()}[/red]")
        raise typer.Exit(code=EXIT_USAGE)

    settings, source = _settings_or_exit(settings_path, target, min_severity, include_rules, exclude_rules)
    report = scan_path(target, settings, source)

    report_path = None
    if output:
        report_path = Path(output)
        write_report(report, report_path)

    if output_json:
        print(to_canonical_json(report), end="")
    elif not quiet:
        print_report(report, verbose=verbose, report_path=str(report_path) if report_path else None)

    if report.has_errors:
        raise typer.Exit(code=EXIT_FINDINGS)


@app.command()
def rules(
    settings_path: Optional[str] = typer.Option(None, "--settings", help="Path to a YAML settings file"),
) -> None:
    """List every rule with its effective severity and enabled state."""
    settings, _ = _settings_or_exit(settings_path, Path.cwd())
    print_rules_table(RULES, settings)


@app.command()
def parse(
    file: str = typer.Argument(..., help="PowerShell script to parse"),
) -> None:
    """Print the node outline the rules see for one script."""
    try:
        tree = parse_file(file)
    except (ScriptParseError, OSError) as e:
        console.print(f"[red]Cannot parse {escape(file)}:[/red] {escape(str(e))}", highlight=False)
        raise typer.Exit(code=EXIT_USAGE)
    print_parse_outline(tree)


@app.command()
def version() -> None:
    """Show the fasguard version."""
    console.print(f"fasguard v{__version__}")


if __name__ == "__main__":
    app()
