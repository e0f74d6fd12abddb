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

"""Ordered registry of the available rules."""

from __future__ import annotations

from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from fasguard.models.findings import Severity
from fasguard.rules import ad_consistency, credentials, dynamic_execution, plaintext_password


class RuleInfo(BaseModel):
    """Static description of one rule."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    severity: Severity  # most severe level the rule emits
    check: Callable


RULES: tuple[RuleInfo, ...] = (
    RuleInfo(
        id=credentials.RULE_ID,
        name=credentials.RULE_NAME,
        description="Hardcoded passwords, tokens, keys and connection strings",
        severity=Severity.ERROR,
        check=credentials.check_hardcoded_credentials,
    ),
    RuleInfo(
        id=plaintext_password.RULE_ID,
        name=plaintext_password.RULE_NAME,
        description="Secrets declared, converted or passed as plain-text strings",
        severity=Severity.ERROR,
        check=plaintext_password.check_plaintext_passwords,
    ),
    RuleInfo(
        id=dynamic_execution.RULE_ID,
        name=dynamic_execution.RULE_NAME,
        description="Invoke-Expression, runtime script blocks and download-then-execute",
        severity=Severity.ERROR,
        check=dynamic_execution.check_dynamic_execution,
    ),
    RuleInfo(
        id=ad_consistency.RULE_ID,
        name=ad_consistency.RULE_NAME,
        description="SID/UPN shape, domain parameter consistency and unguarded AD lookups",
        severity=Severity.WARNING,
        check=ad_consistency.check_ad_consistency,
    ),
)

RULE_IDS: tuple[str, ...] = tuple(rule.id for rule in RULES)


def get_rule(rule_id: str) -> Optional[RuleInfo]:
    wanted = rule_id.strip().upper()
    for rule in RULES:
        if rule.id == wanted:
            return rule
    return None
