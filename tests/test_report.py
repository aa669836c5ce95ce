from __future__ import annotations

import io
import json
import xml.etree.ElementTree as ET
from pathlib import Path

import yaml
from rich.console import Console

from gocars_batch.models import BatchCommandResult, BatchResult, BatchSummary
from gocars_batch.report import (
    ProgressPrinter,
    render_result,
    result_to_junit_xml,
    summary_lines,
    write_result,
)


def _command(name: str, **kwargs: object) -> BatchCommandResult:
    values: dict[str, object] = {
        "name": name,
        "command": "pytest",
        "args": ("-q",),
        "start_time": "2024-01-01T00:00:00.000Z",
        "end_time": "2024-01-01T00:00:01.000Z",
        "duration_ms": 1000.0,
        "exit_code": 0,
        "success": True,
        "output": "ok",
    }
    values.update(kwargs)
    return BatchCommandResult(**values)  # type: ignore[arg-type]


def _result() -> BatchResult:
    commands = (
        _command("unit"),
        _command("ui", exit_code=2, success=False, output="1 failed"),
        _command(
            "docs",
            exit_code=-1,
            success=False,
            skipped=True,
            duration_ms=0.0,
            output="Not executed: job stopped after 'ui' failed",
        ),
    )
    return BatchResult(
        job_id="nightly",
        job_name="Nightly",
        start_time="2024-01-01T00:00:00.000Z",
        end_time="2024-01-01T00:00:02.500Z",
        duration_ms=2500.0,
        success=False,
        commands=commands,
        summary=BatchSummary.from_results(commands),
        aborted_after="ui",
    )


def _buffer_console() -> tuple[Console, io.StringIO]:
    buffer = io.StringIO()
    return Console(file=buffer, width=200, highlight=False, emoji=False), buffer


def test_summary_lines() -> None:
    lines = summary_lines(_result())
    assert lines[1] == "BATCH JOB SUMMARY"
    assert "Job: Nightly (nightly)" in lines
    assert "Duration: 2.50s" in lines
    assert "Total Commands: 3" in lines
    assert "Passed: 1" in lines
    assert "Failed: 1" in lines
    assert "Skipped: 1" in lines
    assert "Success Rate: 33.3%" in lines
    assert "Result: FAILED" in lines
    assert lines[-2:] == ["Failed Commands:", "  - ui: Exit code 2"]


def test_junit_xml_document() -> None:
    text = result_to_junit_xml(_result())
    assert text.startswith('<?xml version="1.0" encoding="UTF-8"?>')

    suite = ET.fromstring(text.encode("utf-8"))
    assert suite.tag == "testsuite"
    assert suite.attrib["name"] == "Nightly"
    assert suite.attrib["tests"] == "3"
    assert suite.attrib["failures"] == "1"
    assert suite.attrib["skipped"] == "1"
    assert suite.attrib["time"] == "2.500"

    cases = {case.attrib["name"]: case for case in suite.findall("testcase")}
    assert cases["unit"].find("failure") is None
    assert cases["unit"].findtext("system-out") == "ok"
    failure = cases["ui"].find("failure")
    assert failure is not None
    assert failure.attrib["message"] == "Exit code 2"
    skipped = cases["docs"].find("skipped")
    assert skipped is not None
    assert "job stopped" in skipped.attrib["message"]


def test_write_result_formats(tmp_path: Path) -> None:
    result = _result()

    json_path = write_result(result, tmp_path / "out" / "result.json")
    payload = json.loads(json_path.read_text(encoding="utf-8"))
    assert payload["jobId"] == "nightly"
    assert payload["abortedAfter"] == "ui"
    assert payload["summary"] == {"total": 3, "passed": 1, "failed": 1, "skipped": 1}
    assert BatchResult.from_json(payload) == result

    yaml_path = write_result(result, tmp_path / "result.yaml")
    assert yaml.safe_load(yaml_path.read_text(encoding="utf-8"))["jobName"] == "Nightly"

    xml_path = write_result(result, tmp_path / "result.xml", fmt="junit")
    assert ET.fromstring(xml_path.read_bytes()).attrib["failures"] == "1"


def test_progress_printer_lines() -> None:
    out, buffer = _buffer_console()
    printer = ProgressPrinter(out)
    events = [
        {"event": "job_start", "job_id": "nightly", "job_name": "Nightly", "total": 3, "parallel": False},
        {"event": "command_start", "command": "unit", "index": 0, "argv": ["pytest", "-q"]},
        {"event": "command_complete", "command": "unit", "success": True, "duration_ms": 12.4},
        {"event": "command_start", "command": "ui", "index": 1, "argv": ["pytest"]},
        {"event": "command_retry", "command": "ui", "attempt": 1, "max_retries": 2},
        {"event": "command_complete", "command": "ui", "success": False, "exit_code": 2, "duration_ms": 5},
        {"event": "job_aborted", "command": "ui"},
        {"event": "command_skipped", "command": "docs", "index": 2, "reason": "aborted"},
        {"event": "job_end", "job_id": "nightly"},
    ]
    for event in events:
        printer(event)

    assert buffer.getvalue().splitlines() == [
        "Starting batch job: Nightly",
        "Job ID: nightly",
        "Commands: 3",
        "Parallel execution: No",
        "=" * 60,
        "[START] [1/3] unit: pytest -q",
        "[PASS] unit (12ms)",
        "[START] [2/3] ui: pytest",
        "[RETRY] ui attempt 1/2",
        "[FAIL] ui exit code 2 (5ms)",
        "Stopping execution due to command failure: ui",
        "[SKIP] [3/3] docs (job stopped)",
    ]


def test_render_result_console_and_json() -> None:
    out, buffer = _buffer_console()
    render_result(_result(), "console", out)
    text = buffer.getvalue()
    assert "BATCH JOB SUMMARY" in text
    assert "Command Results" in text
    assert "skipped" in text

    out, buffer = _buffer_console()
    render_result(_result(), "json", out)
    assert json.loads(buffer.getvalue())["success"] is False
