from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.table import Table

from gocars_batch.models import BatchResult
from gocars_batch.utils import (
    YAML_SUFFIXES,
    atomic_write_text,
    render_document,
    truncate_text,
)

_log = logging.getLogger("gocars_batch.report")

REPORT_FORMATS = ("console", "json", "junit")
_RULE = "=" * 60


def console(*, stderr: bool = False) -> Console:
    return Console(highlight=False, emoji=False, stderr=stderr)


def _yes_no(value: bool) -> str:
    return "Yes" if value else "No"


def _format_duration_ms(value: Any) -> str:
    try:
        return f"{float(value):.0f}ms"
    except (TypeError, ValueError):
        return "-"


class ProgressPrinter:
    """Progress callback that streams one line per engine event."""

    def __init__(self, out: Console | None = None):
        self._console = out or console()
        self._total = 0

    def _line(self, text: str, *, style: str | None = None) -> None:
        self._console.print(text, style=style, markup=False, soft_wrap=True)

    def _position(self, event: dict[str, Any]) -> str:
        index = event.get("index")
        if not isinstance(index, int) or self._total <= 0:
            return ""
        return f"[{index + 1}/{self._total}] "

    def __call__(self, event: dict[str, Any]) -> None:
        kind = event.get("event")
        name = str(event.get("command", ""))
        if kind == "job_start":
            self._total = int(event.get("total", 0))
            self._line(f"Starting batch job: {event.get('job_name', '')}", style="bold")
            self._line(f"Job ID: {event.get('job_id', '')}")
            self._line(f"Commands: {self._total}")
            self._line(f"Parallel execution: {_yes_no(bool(event.get('parallel')))}")
            self._line(_RULE)
        elif kind == "command_start":
            argv = " ".join(str(part) for part in event.get("argv", []))
            self._line(f"[START] {self._position(event)}{name}: {argv}", style="cyan")
        elif kind == "command_retry":
            self._line(
                f"[RETRY] {name} attempt {event.get('attempt')}/{event.get('max_retries')}",
                style="yellow",
            )
        elif kind == "command_skipped":
            if event.get("reason") == "condition":
                detail = f"condition: {event.get('condition')}"
            else:
                detail = "job stopped"
            self._line(f"[SKIP] {self._position(event)}{name} ({detail})", style="dim")
        elif kind == "command_complete":
            duration = _format_duration_ms(event.get("duration_ms"))
            if event.get("success"):
                self._line(f"[PASS] {name} ({duration})", style="green")
            else:
                self._line(
                    f"[FAIL] {name} exit code {event.get('exit_code')} ({duration})",
                    style="red",
                )
        elif kind == "job_aborted":
            self._line(
                f"Stopping execution due to command failure: {name}", style="bold red"
            )


def summary_lines(result: BatchResult) -> list[str]:
    summary = result.summary
    lines = [
        _RULE,
        "BATCH JOB SUMMARY",
        _RULE,
        f"Job: {result.job_name} ({result.job_id})",
        f"Duration: {result.duration_ms / 1000.0:.2f}s",
        f"Total Commands: {summary.total}",
        f"Passed: {summary.passed}",
        f"Failed: {summary.failed}",
        f"Skipped: {summary.skipped}",
        f"Success Rate: {summary.success_rate:.1f}%",
        "Result: " + ("PASSED" if result.success else "FAILED"),
        _RULE,
    ]
    failed = result.failed_commands
    if failed:
        lines.append("Failed Commands:")
        for item in failed:
            lines.append(f"  - {item.name}: {item.error or f'Exit code {item.exit_code}'}")
    return lines


def render_summary_block(result: BatchResult, out: Console | None = None) -> None:
    target = out or console()
    for line in summary_lines(result):
        target.print(line, markup=False, soft_wrap=True)


def render_results_table(result: BatchResult, out: Console | None = None) -> None:
    target = out or console()
    table = Table(title="Command Results", box=box.SIMPLE)
    table.add_column("#", justify="right")
    table.add_column("Command", style="bold")
    table.add_column("Status")
    table.add_column("Exit", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Retries", justify="right")
    for index, item in enumerate(result.commands, start=1):
        if item.skipped:
            status = "skipped"
        elif item.success:
            status = "passed"
        else:
            status = "failed"
        table.add_row(
            str(index),
            item.name,
            status,
            str(item.exit_code),
            _format_duration_ms(item.duration_ms),
            str(item.retry_count),
        )
    target.print(table)


def result_to_json_text(result: BatchResult) -> str:
    return json.dumps(result.to_json(), indent=2, sort_keys=True) + "\n"


def result_to_junit_xml(result: BatchResult) -> str:
    """Serialize *result* as a single JUnit ``<testsuite>`` document."""
    summary = result.summary
    suite = ET.Element(
        "testsuite",
        {
            "name": result.job_name,
            "id": result.job_id,
            "tests": str(summary.total),
            "failures": str(summary.failed),
            "errors": "0",
            "skipped": str(summary.skipped),
            "time": f"{result.duration_ms / 1000.0:.3f}",
            "timestamp": result.start_time,
        },
    )
    for item in result.commands:
        case = ET.SubElement(
            suite,
            "testcase",
            {
                "name": item.name,
                "classname": result.job_id,
                "time": f"{item.duration_ms / 1000.0:.3f}",
            },
        )
        if item.skipped:
            ET.SubElement(case, "skipped", {"message": item.output or "skipped"})
        elif not item.success:
            failure = ET.SubElement(
                case,
                "failure",
                {
                    "message": item.error or f"Exit code {item.exit_code}",
                    "type": "exit_code",
                },
            )
            failure.text = f"exit code {item.exit_code}"
        if item.output and not item.skipped:
            system_out = ET.SubElement(case, "system-out")
            system_out.text = truncate_text(item.output)
    ET.indent(suite, space="  ")
    body = ET.tostring(suite, encoding="unicode")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + body + "\n"


def serialize_result(result: BatchResult, *, fmt: str = "json", path: Path | None = None) -> str:
    if fmt == "junit":
        return result_to_junit_xml(result)
    if path is not None and path.suffix.lower() in YAML_SUFFIXES:
        return render_document(result.to_json(), "yaml")
    return result_to_json_text(result)


def write_result(result: BatchResult, path: str | Path, *, fmt: str = "json") -> Path:
    """Write *result* to *path*.

    JUnit XML when ``fmt == "junit"``, YAML for ``.yaml``/``.yml`` paths,
    JSON otherwise.
    """
    target = Path(path).expanduser()
    atomic_write_text(target, serialize_result(result, fmt=fmt, path=target))
    _log.info("result_written job_id=%s path=%s format=%s", result.job_id, target, fmt)
    return target


def render_result(result: BatchResult, fmt: str, out: Console | None = None) -> None:
    """Print the end-of-run report in the requested format."""
    target = out or console()
    if fmt in ("json", "junit"):
        text = result_to_junit_xml(result) if fmt == "junit" else result_to_json_text(result)
        target.print(text, markup=False, emoji=False, soft_wrap=True, end="")
        return
    render_summary_block(result, target)
    render_results_table(result, target)
