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

"""Risk pattern catalog and false-positive whitelist for credential rules.

Both tables are ordered and built at import time. Callers match them with
``search`` against the lower-cased source text of a node. The whitelist is
consulted first and wins outright: anything that looks like an AD
identifier, a Citrix template name, a placeholder or a runtime-sourced
value is never reported as a credential.
"""

from __future__ import annotations

import functools
import logging
import re
from typing import NamedTuple, Optional

from fasguard.models.settings import RuleSettings

logger = logging.getLogger(__name__)


class RiskPattern(NamedTuple):
    name: str
    regex: re.Pattern
    message: str  # formatted with {target}


class WhitelistEntry(NamedTuple):
    name: str
    regex: re.Pattern


# ── Credential risk patterns (first match wins) ──

_QUOTED_8 = r"""\s*=\s*["'][^"']{8,}["']"""

RISK_PATTERNS: tuple[RiskPattern, ...] = (
    RiskPattern(
        "password_assignment",
        re.compile(r"""\$[\w:]*(?:password|passwd)\w*""" + _QUOTED_8),
        "Hardcoded password assigned to {target}",
    ),
    RiskPattern(
        "pwd_assignment",
        re.compile(r"""\$[\w:]*pwd\w*""" + _QUOTED_8),
        "Hardcoded password assigned to {target}",
    ),
    RiskPattern(
        "api_key",
        re.compile(r"""(?:api[_-]?key)\w*""" + _QUOTED_8),
        "Hardcoded API key in {target}",
    ),
    RiskPattern(
        "api_secret",
        re.compile(r"""(?:api|client)[_-]?secret\w*""" + _QUOTED_8),
        "Hardcoded API/client secret in {target}",
    ),
    RiskPattern(
        "token",
        re.compile(r"""\$[\w:]*token\w*\s*=\s*["'][a-z0-9_\-.]{20,}["']"""),
        "Hardcoded token assigned to {target}",
    ),
    RiskPattern(
        "bearer_token",
        re.compile(r"""bearer\s+[a-z0-9_\-.=]{20,}"""),
        "Hardcoded bearer token in {target}",
    ),
    RiskPattern(
        "connection_string",
        re.compile(r"""(?:server|data source)\s*=[^;]+;.*?(?:password|pwd)\s*=\s*[^;'"\s]+"""),
        "Connection string with embedded password in {target}",
    ),
    RiskPattern(
        "access_key",
        re.compile(r"""access[_-]?key\w*""" + _QUOTED_8),
        "Hardcoded access key in {target}",
    ),
    RiskPattern(
        "secret_key",
        re.compile(r"""secret[_-]?key\w*""" + _QUOTED_8),
        "Hardcoded secret key in {target}",
    ),
    RiskPattern(
        "url_credentials",
        re.compile(r"""[a-z][a-z0-9+.\-]*://[^/\s:@'"]+:[^/\s@'"]+@[^\s'"]+"""),
        "URL with embedded credentials in {target}",
    ),
)


# ── Whitelist (false-positive suppression) ──

WHITELIST: tuple[WhitelistEntry, ...] = (
    # Security identifiers, e.g. S-1-5-21-...-1104
    WhitelistEntry("sid", re.compile(r"""\bs-1-\d+(?:-\d+)+\b""")),
    WhitelistEntry("distinguished_name", re.compile(r"""\b(?:cn|ou|dc)=[^,]+,\s*(?:cn|ou|dc)=""")),
    WhitelistEntry(
        "citrix_template",
        re.compile(r"""citrix_(?:smartcardlogon|registrationauthority(?:_manualauthorization)?)"""),
    ),
    WhitelistEntry("template_assignment", re.compile(r"""\$[\w:]*template\w*\s*=""")),
    WhitelistEntry("angle_placeholder", re.compile(r"""<[^<>\s][^<>]*>""")),
    WhitelistEntry("changeme", re.compile(r"""change[_-]?me""")),
    WhitelistEntry("your_secret", re.compile(r"""your[-_ ]?(?:password|secret|key|token)""")),
    WhitelistEntry("placeholder", re.compile(r"""placeholder""")),
    WhitelistEntry("masked", re.compile(r"""x{4,}|\*{4,}""")),
    WhitelistEntry("variable_reference", re.compile(r"""(?:^|=\s*)["']?\$\{?[\w:]+\}?["']?\s*$""")),
    WhitelistEntry(
        "runtime_source",
        re.compile(r"""read-host|get-credential|get-secret|get-storedcredential|get-azkeyvaultsecret"""),
    ),
    WhitelistEntry(
        "guid",
        re.compile(r"""\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b"""),
    ),
    # Certificate thumbprints (SHA-1 hex)
    WhitelistEntry("thumbprint", re.compile(r"""(?:^|["'\s=])[0-9a-f]{40}(?:["'\s]|$)""")),
)


@functools.lru_cache(maxsize=32)
def _extra_entries(patterns: tuple[str, ...]) -> tuple[WhitelistEntry, ...]:
    return tuple(
        WhitelistEntry(f"custom:{p}", re.compile(p, re.IGNORECASE)) for p in patterns
    )


def whitelist_for(settings: Optional[RuleSettings] = None) -> tuple[WhitelistEntry, ...]:
    """Built-in whitelist plus any ``additional_whitelist`` regexes."""
    if settings is None or not settings.additional_whitelist:
        return WHITELIST
    return WHITELIST + _extra_entries(tuple(settings.additional_whitelist))


def match_whitelist(text: str, settings: Optional[RuleSettings] = None) -> Optional[str]:
    """Name of the first whitelist entry matching ``text``, or None."""
    lowered = text.lower()
    for entry in whitelist_for(settings):
        if entry.regex.search(lowered):
            return entry.name
    return None


def is_whitelisted(text: str, settings: Optional[RuleSettings] = None) -> bool:
    """The single false-positive guard; checked before any risk pattern."""
    name = match_whitelist(text, settings)
    if name is not None:
        logger.debug("Whitelisted (%s): %.60s", name, text)
        return True
    return False


def match_risk(text: str) -> Optional[RiskPattern]:
    """First risk pattern matching ``text``, or None."""
    lowered = text.lower()
    for pattern in RISK_PATTERNS:
        if pattern.regex.search(lowered):
            return pattern
    return None
