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

"""Pydantic models for the scan report (per-script results + summary)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from fasguard import __version__
from fasguard.models.findings import Finding, Severity


class ScriptReport(BaseModel):
    """Results for one script.

    ``parse_error`` is set when the script could not be read or parsed;
    ``rule_errors`` lists rule ids whose traversal failed and were skipped.
    """

    script_path: str
    findings: list[Finding] = Field(default_factory=list)
    parse_error: Optional[str] = None
    rule_errors: list[str] = Field(default_factory=list)


class SeveritySummary(BaseModel):
    """Finding counts by severity."""

    Error: int = 0
    Warning: int = 0
    Information: int = 0

    @property
    def total(self) -> int:
        return self.Error + self.Warning + self.Information


class ScanReport(BaseModel):
    """The complete report for one invocation (fasguard_report.json)."""

    fasguard_version: str = __version__
    scan_target: str = ""
    scan_timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    settings_source: str = "default"
    discovery_source: str = ""  # "file", "git" or "directory"
    scripts: list[ScriptReport] = Field(default_factory=list)
    summary: SeveritySummary = Field(default_factory=SeveritySummary)

    @property
    def findings(self) -> list[Finding]:
        return [f for script in self.scripts for f in script.findings]

    @property
    def has_errors(self) -> bool:
        return self.summary.Error > 0

    def recompute_summary(self) -> None:
        summary = SeveritySummary()
        for finding in self.findings:
            if finding.severity == Severity.ERROR:
                summary.Error += 1
            elif finding.severity == Severity.WARNING:
                summary.Warning += 1
            else:
                summary.Information += 1
        self.summary = summary
