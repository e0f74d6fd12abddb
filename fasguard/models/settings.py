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

"""Pydantic models for rule settings (which rules run, and at what severity)."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from fasguard.models.findings import Severity


class RuleOverride(BaseModel):
    """Per-rule switch and severity override."""

    enabled: bool = True
    severity: Optional[Severity] = None

    @field_validator("severity", mode="before")
    @classmethod
    def _parse_severity(cls, value):
        if value is None or isinstance(value, Severity):
            return value
        return Severity.parse(value)


class RuleSettings(BaseModel):
    """Explicit configuration handed to every rule and to the aggregator.

    Empty ``include_rules`` means "all registered rules".
    """

    include_rules: list[str] = Field(default_factory=list)
    exclude_rules: list[str] = Field(default_factory=list)
    min_severity: Severity = Severity.INFORMATION
    rules: dict[str, RuleOverride] = Field(default_factory=dict)
    additional_whitelist: list[str] = Field(default_factory=list)

    @field_validator("min_severity", mode="before")
    @classmethod
    def _parse_min_severity(cls, value):
        return Severity.parse(value)

    @field_validator("include_rules", "exclude_rules", mode="before")
    @classmethod
    def _normalize_ids(cls, value):
        if value is None:
            return []
        return [str(v).strip().upper() for v in value]

    @field_validator("rules", mode="before")
    @classmethod
    def _normalize_rule_keys(cls, value):
        if not value:
            return {}
        return {str(k).strip().upper(): (v or {}) for k, v in value.items()}

    def is_enabled(self, rule_id: str) -> bool:
        rule_id = rule_id.upper()
        if self.include_rules and rule_id not in self.include_rules:
            return False
        if rule_id in self.exclude_rules:
            return False
        override = self.rules.get(rule_id)
        if override is not None and not override.enabled:
            return False
        return True

    def severity_for(self, rule_id: str, emitted: Severity) -> Severity:
        """Severity after applying a per-rule override, if any."""
        override = self.rules.get(rule_id.upper())
        if override is not None and override.severity is not None:
            return override.severity
        return emitted
