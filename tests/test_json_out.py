"""Tests for canonical JSON report output."""

import json
from pathlib import Path

from fasguard.models.findings import Finding, Severity, SourceRange
from fasguard.models.report import ScanReport, ScriptReport
from fasguard.reporter.json_out import DEFAULT_REPORT_NAME, to_canonical_json, write_report


def _report() -> ScanReport:
    finding = Finding(
        rule_id="CRED-001",
        rule_name="HardcodedCredential",
        severity=Severity.ERROR,
        message="Hardcoded password assigned to $password",
        source_range=SourceRange(start_line=3, start_column=1, end_line=3, end_column=28),
        script_path="Deploy.ps1",
    )
    report = ScanReport(
        scan_target="/scripts",
        scan_timestamp="2024-01-01T00:00:00+00:00",
        discovery_source="directory",
        scripts=[ScriptReport(script_path="Deploy.ps1", findings=[finding])],
    )
    report.recompute_summary()
    return report


class TestCanonicalJson:
    def test_sorted_keys(self):
        result = to_canonical_json({"z": 1, "a": 2, "m": {"b": 1, "a": 2}})
        assert result == '{\n  "a": 2,\n  "m": {\n    "a": 2,\n    "b": 1\n  },\n  "z": 1\n}\n'

    def test_trailing_newline_and_lf(self):
        result = to_canonical_json({"text": "line"})
        assert result.endswith("}\n")
        assert "\r" not in result

    def test_non_ascii_kept(self):
        assert "Zürich" in to_canonical_json({"site": "Zürich"})

    def test_model(self):
        data = json.loads(to_canonical_json(_report()))
        assert data["summary"] == {"Error": 1, "Information": 0, "Warning": 0}
        assert data["discovery_source"] == "directory"
        finding = data["scripts"][0]["findings"][0]
        assert finding["severity"] == "Error"
        assert finding["source_range"]["start_line"] == 3

    def test_deterministic(self):
        report = _report()
        assert to_canonical_json(report) == to_canonical_json(report)


class TestWriteReport:
    def test_creates_parents(self, tmp_path: Path):
        path = tmp_path / "out" / "ci" / DEFAULT_REPORT_NAME
        report = _report()
        write_report(report, path)
        assert path.read_text(encoding="utf-8") == to_canonical_json(report)

    def test_overwrites(self, tmp_path: Path):
        path = tmp_path / DEFAULT_REPORT_NAME
        path.write_text("stale", encoding="utf-8")
        write_report(_report(), path)
        assert json.loads(path.read_text(encoding="utf-8"))["scan_target"] == "/scripts"
