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

"""Script discovery: finds the PowerShell files to lint under a target path.

Primary strategy: git ls-files (if .git/ exists)
Fallback: recursive directory walk with .fasguardignore support
A single file target is scanned as-is.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

# Default patterns to ignore during discovery
DEFAULT_IGNORE_PATTERNS = {
    ".git",
    ".hg",
    ".svn",
    "node_modules",
    ".venv",
    "venv",
    "dist",
    "build",
    "bin",
    "obj",
    ".vs",
    ".vscode",
    # fasguard's own output
    "fasguard_report.json",
}

# Scripts, modules and module manifests
POWERSHELL_EXTENSIONS = {".ps1", ".psm1", ".psd1"}

IGNORE_FILE = ".fasguardignore"


def _load_ignore_patterns(target_dir: Path) -> set[str]:
    """Load .fasguardignore patterns from the target directory."""
    ignore_file = target_dir / IGNORE_FILE
    patterns = set(DEFAULT_IGNORE_PATTERNS)

    if ignore_file.exists():
        for line in ignore_file.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                patterns.add(line)

    return patterns


def _should_ignore(path: Path, ignore_patterns: set[str]) -> bool:
    """Check if a path matches any ignore pattern."""
    for pattern in ignore_patterns:
        if pattern.startswith("*"):
            # Glob-style suffix matching
            suffix = pattern.lstrip("*")
            if path.name.endswith(suffix) or str(path).endswith(suffix):
                return True
        elif path.name == pattern or pattern in path.parts:
            return True
    return False


def get_files_git(target_dir: Path) -> list[Path] | None:
    """Get tracked and untracked-but-not-ignored files using git ls-files.

    Returns None if git is not available or target_dir is not a git repo.
    """
    try:
        result = subprocess.run(
            ["git", "ls-files", "--cached", "--others", "--exclude-standard"],
            cwd=str(target_dir),
            capture_output=True,
            text=True,
            timeout=30,
        )
    except FileNotFoundError:
        logger.debug("git not found in PATH")
        return None
    except subprocess.TimeoutExpired:
        logger.warning("git ls-files timed out")
        return None

    if result.returncode != 0:
        logger.debug("git ls-files failed: %s", result.stderr)
        return None
    return sorted(Path(line) for line in result.stdout.splitlines() if line)


def get_files_directory(target_dir: Path) -> list[Path]:
    """Get files via recursive directory walk. Paths are relative to target_dir."""
    files = []
    for item in sorted(target_dir.rglob("*")):
        if item.is_file():
            files.append(item.relative_to(target_dir))
    return files


def is_powershell_file(path: Path) -> bool:
    return path.suffix.lower() in POWERSHELL_EXTENSIONS


def get_powershell_files(all_files: list[Path], ignore_patterns: set[str]) -> list[Path]:
    """Filter to PowerShell sources that are not ignored."""
    return [f for f in all_files if is_powershell_file(f) and not _should_ignore(f, ignore_patterns)]


def discover_scripts(target: Path) -> tuple[list[Path], str]:
    """Discover scripts to lint.

    Returns:
        tuple of (absolute script paths, discovery source) where the source
        is "file", "git" or "directory".
    """
    target = target.resolve()

    if not target.exists():
        raise FileNotFoundError(f"Scan target does not exist: {target}")

    if target.is_file():
        return [target], "file"

    ignore_patterns = _load_ignore_patterns(target)

    if (target / ".git").exists():
        files = get_files_git(target)
        if files is not None:
            scripts = get_powershell_files(files, ignore_patterns)
            logger.info("Using git-derived file list (%d scripts)", len(scripts))
            return [target / f for f in scripts], "git"

    scripts = get_powershell_files(get_files_directory(target), ignore_patterns)
    logger.info("Using directory walk (%d scripts)", len(scripts))
    return [target / f for f in scripts], "directory"
