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

"""Settings loading and rule aggregation.

Resolves which settings apply to a scan, runs every enabled rule over a
parsed script, applies per-rule severity overrides and the minimum
severity filter, and collects per-script and whole-scan reports.

Settings resolution order (later wins):
1. --settings PATH, else .fasguard.yaml in the scan target, else the
   bundled default_settings.yaml
2. FASGUARD_MIN_SEVERITY environment variable
3. explicit CLI overrides (min severity, include/exclude rules)
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Iterable, Mapping, Optional

import yaml
from pydantic import ValidationError

from fasguard.models.findings import Finding
from fasguard.models.report import ScanReport, ScriptReport
from fasguard.models.settings import RuleSettings
from fasguard.rules.registry import RULE_IDS, RULES
from fasguard.scanner.coordinator import discover_scripts
from fasguard.scanner.ps_ast import SyntaxTree
from fasguard.scanner.ps_lexer import ScriptParseError
from fasguard.scanner.ps_parser import parse_file

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path(__file__).parent.parent / "config" / "default_settings.yaml"
PROJECT_SETTINGS_FILE = ".fasguard.yaml"
MIN_SEVERITY_ENV = "FASGUARD_MIN_SEVERITY"


class SettingsError(ValueError):
    pass


def _check_rule_ids(settings: RuleSettings) -> None:
    known = set(RULE_IDS)
    named = set(settings.include_rules) | set(settings.exclude_rules) | set(settings.rules)
    unknown = sorted(named - known)
    if unknown:
        raise SettingsError(f"Unknown rule id(s): {', '.join(unknown)} (known: {', '.join(RULE_IDS)})")


def _check_whitelist(settings: RuleSettings) -> None:
    for pattern in settings.additional_whitelist:
        try:
            re.compile(pattern)
        except re.error as e:
            raise SettingsError(f"Invalid additional_whitelist pattern {pattern!r}: {e}") from e


def build_settings(data: Mapping) -> RuleSettings:
    """Validate a settings mapping into RuleSettings."""
    try:
        settings = RuleSettings(**data)
    except (ValidationError, ValueError, TypeError) as e:
        raise SettingsError(f"Invalid settings: {e}") from e
    _check_rule_ids(settings)
    _check_whitelist(settings)
    return settings


def load_settings(settings_path: str | Path) -> RuleSettings:
    """Load rule settings from a YAML file."""
    path = Path(settings_path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise SettingsError(f"Cannot read settings file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise SettingsError(f"Malformed YAML in settings file {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise SettingsError(f"Settings file {path} must contain a mapping, got {type(data).__name__}")
    return build_settings(data)


def apply_overrides(
    settings: RuleSettings,
    min_severity: Optional[str] = None,
    include_rules: Optional[Iterable[str]] = None,
    exclude_rules: Optional[Iterable[str]] = None,
) -> RuleSettings:
    """Return a copy of ``settings`` with explicit overrides applied."""
    data = settings.model_dump()
    if min_severity:
        data["min_severity"] = min_severity
    if include_rules:
        data["include_rules"] = list(include_rules)
    if exclude_rules:
        data["exclude_rules"] = sorted(set(data["exclude_rules"]) | {r.upper() for r in exclude_rules})
    return build_settings(data)


def resolve_settings(
    settings_path: Optional[str | Path] = None,
    target: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> tuple[RuleSettings, str]:
    """Pick the settings file for a scan and apply the environment override.

    Returns (settings, source) where source names the file that was used.
    """
    if settings_path is not None:
        path = Path(settings_path)
    else:
        path = DEFAULT_SETTINGS_PATH
        if target is not None:
            base = target if target.is_dir() else target.parent
            if (base / PROJECT_SETTINGS_FILE).is_file():
                path = base / PROJECT_SETTINGS_FILE

    if path.exists() or settings_path is not None:
        settings = load_settings(path)
        source = "default" if path == DEFAULT_SETTINGS_PATH else str(path)
    else:
        logger.warning("Bundled settings not found at %s; using built-in defaults", path)
        settings = RuleSettings()
        source = "default"

    environ = os.environ if environ is None else environ
    env_severity = environ.get(MIN_SEVERITY_ENV)
    if env_severity:
        logger.debug("Applying %s=%s", MIN_SEVERITY_ENV, env_severity)
        settings = apply_overrides(settings, min_severity=env_severity)

    return settings, source


def run_rules(
    tree: SyntaxTree,
    settings: Optional[RuleSettings] = None,
    errors: Optional[list[str]] = None,
) -> list[Finding]:
    """Run every enabled rule over ``tree`` and aggregate the findings.

    Findings keep registry order, then each rule's own order. A rule that
    fails is skipped and its id appended to ``errors``.
    """
    settings = settings or RuleSettings()
    findings: list[Finding] = []

    for rule in RULES:
        if not settings.is_enabled(rule.id):
            logger.debug("Rule %s disabled by settings", rule.id)
            continue
        for finding in rule.check(tree, settings, errors=errors):
            severity = settings.severity_for(rule.id, finding.severity)
            if severity != finding.severity:
                finding = finding.model_copy(update={"severity": severity})
            if severity.at_least(settings.min_severity):
                findings.append(finding)

    return findings


def scan_script(script_path: str | Path, settings: Optional[RuleSettings] = None) -> ScriptReport:
    """Parse and lint one script. Never raises for unreadable or malformed input."""
    path_str = str(script_path)
    try:
        tree = parse_file(script_path)
    except ScriptParseError as e:
        logger.warning("Skipping %s: %s", path_str, e)
        return ScriptReport(script_path=path_str, parse_error=str(e))
    except OSError as e:
        logger.warning("Cannot read %s: %s", path_str, e)
        return ScriptReport(script_path=path_str, parse_error=f"Cannot read file: {e}")

    errors: list[str] = []
    findings = run_rules(tree, settings, errors)
    return ScriptReport(script_path=path_str, findings=findings, rule_errors=errors)


def scan_path(
    target: str | Path,
    settings: Optional[RuleSettings] = None,
    settings_source: str = "default",
) -> ScanReport:
    """Discover and lint every PowerShell script under ``target``."""
    target = Path(target)
    scripts, discovery = discover_scripts(target)
    logger.info("Scanning %d script(s) from %s (%s)", len(scripts), target, discovery)

    report = ScanReport(
        scan_target=str(target.resolve()),
        settings_source=settings_source,
        discovery_source=discovery,
    )
    for script in scripts:
        report.scripts.append(scan_script(script, settings))
    report.recompute_summary()

    if report.summary.Error:
        logger.info("%d error finding(s)", report.summary.Error)
    return report
