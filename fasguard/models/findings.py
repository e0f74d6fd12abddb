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

"""Pydantic models for source ranges, severities and findings."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class Severity(str, Enum):
    """Diagnostic severity, named the way PSScriptAnalyzer names them."""

    ERROR = "Error"
    WARNING = "Warning"
    INFORMATION = "Information"

    @property
    def rank(self) -> int:
        """Numeric rank for threshold comparisons (higher is more severe)."""
        return _SEVERITY_RANK[self]

    def at_least(self, minimum: "Severity") -> bool:
        return self.rank >= minimum.rank

    @classmethod
    def parse(cls, value: str | "Severity") -> "Severity":
        """Case-insensitive lookup that also accepts short forms ("info")."""
        if isinstance(value, Severity):
            return value
        key = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == key:
                return member
        if key == "info":
            return cls.INFORMATION
        raise ValueError(f"Unknown severity: {value!r}")


_SEVERITY_RANK = {
    Severity.INFORMATION: 0,
    Severity.WARNING: 1,
    Severity.ERROR: 2,
}


class SourceRange(BaseModel):
    """Location of a node in a script.

    Lines and columns are 1-based with an exclusive end column (the way
    PowerShell reports extents); offsets are 0-based character offsets.
    """

    model_config = ConfigDict(frozen=True)

    start_line: int
    start_column: int
    end_line: int
    end_column: int
    start_offset: int = 0
    end_offset: int = 0

    def contains(self, other: "SourceRange") -> bool:
        """True when ``other`` lies entirely within this range."""
        return (
            self.start_offset <= other.start_offset
            and other.end_offset <= self.end_offset
        )

    def __str__(self) -> str:
        return f"{self.start_line}:{self.start_column}"


class Finding(BaseModel):
    """A single rule violation (the DiagnosticRecord of the linter).

    ``source_range`` always points at a node of the scanned tree.
    """

    rule_id: str  # e.g. "CRED-001"
    rule_name: str = ""
    severity: Severity
    message: str
    source_range: SourceRange
    script_path: str = ""

    @property
    def line(self) -> int:
        return self.source_range.start_line

    @property
    def column(self) -> int:
        return self.source_range.start_column
