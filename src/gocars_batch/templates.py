"""Starter batch jobs written by ``batch create``."""

from __future__ import annotations

import time

from gocars_batch.models import BatchCommand, BatchJob, ConfigError

TEMPLATE_NAMES = ("basic", "ci", "regression", "performance")


def _stamp() -> int:
    return int(time.time() * 1000)


def _basic() -> BatchJob:
    return BatchJob(
        id=f"sample-job-{_stamp()}",
        name="Sample Test Job",
        description="A sample batch job demonstrating various testing scenarios",
        parallel=False,
        continue_on_error=False,
        timeout=3_600_000,
        retry_attempts=1,
        environment={"PYTHONUNBUFFERED": "1", "LOG_LEVEL": "info"},
        commands=(
            BatchCommand(
                name="Smoke Tests",
                command="pytest",
                args=("-m", "smoke", "-q"),
                timeout=300_000,
                continue_on_error=False,
            ),
            BatchCommand(
                name="API Tests",
                command="pytest",
                args=("tests/api", "--junitxml", "test-reports/api.xml"),
                timeout=600_000,
                continue_on_error=True,
            ),
            BatchCommand(
                name="UI Tests",
                command="pytest",
                args=("tests/ui", "-q"),
                timeout=900_000,
                condition='${RUN_UI_TESTS} == "true"',
                continue_on_error=True,
            ),
            BatchCommand(
                name="Generate Report",
                command="coverage",
                args=("html", "-d", "test-reports/coverage"),
                timeout=120_000,
                continue_on_error=False,
            ),
        ),
    )


def _ci() -> BatchJob:
    return BatchJob(
        id=f"ci-pipeline-{_stamp()}",
        name="CI Pipeline",
        description="Continuous Integration pipeline for automated testing",
        parallel=False,
        continue_on_error=False,
        timeout=7_200_000,
        retry_attempts=2,
        environment={"CI": "true", "LOG_LEVEL": "info"},
        commands=(
            BatchCommand(
                name="Validate Configuration",
                command="gocars-test",
                args=("config", "show"),
                timeout=30_000,
                continue_on_error=False,
            ),
            BatchCommand(
                name="Smoke Tests",
                command="pytest",
                args=("-m", "smoke", "-x", "--junitxml", "test-reports/smoke.xml"),
                timeout=600_000,
                continue_on_error=False,
            ),
            BatchCommand(
                name="Unit Tests",
                command="pytest",
                args=("-m", "unit", "--junitxml", "test-reports/unit.xml"),
                timeout=1_200_000,
                continue_on_error=False,
            ),
            BatchCommand(
                name="Integration Tests",
                command="pytest",
                args=("-m", "integration", "--junitxml", "test-reports/integration.xml"),
                timeout=1_800_000,
                continue_on_error=False,
            ),
            BatchCommand(
                name="Generate Reports",
                command="coverage",
                args=("xml", "-o", "test-reports/coverage.xml"),
                timeout=300_000,
                continue_on_error=True,
            ),
        ),
    )


def _regression() -> BatchJob:
    suites = (
        ("API Regression Tests", "tests/api", 3_600_000),
        ("UI Regression Tests", "tests/ui", 5_400_000),
        ("Database Tests", "tests/database", 1_800_000),
        ("Performance Tests", "tests/performance", 3_600_000),
    )
    return BatchJob(
        id=f"regression-suite-{_stamp()}",
        name="Regression Test Suite",
        description="Comprehensive regression testing across all components",
        parallel=True,
        continue_on_error=True,
        timeout=14_400_000,
        retry_attempts=1,
        commands=tuple(
            BatchCommand(
                name=name,
                command="pytest",
                args=(path, "-m", "regression", "-q"),
                timeout=timeout,
                continue_on_error=True,
            )
            for name, path, timeout in suites
        ),
    )


def _performance() -> BatchJob:
    stages = (
        ("Baseline Performance Tests", "baseline", 1_800_000, False),
        ("Load Tests - Light", "load_light", 3_600_000, True),
        ("Load Tests - Heavy", "load_heavy", 5_400_000, True),
        ("Stress Tests", "stress", 3_600_000, True),
    )
    commands = [
        BatchCommand(
            name=name,
            command="pytest",
            args=("tests/performance", "-m", marker, "-q"),
            timeout=timeout,
            continue_on_error=keep_going,
        )
        for name, marker, timeout, keep_going in stages
    ]
    commands.append(
        BatchCommand(
            name="Performance Report",
            command="coverage",
            args=("report",),
            timeout=300_000,
            continue_on_error=False,
        )
    )
    return BatchJob(
        id=f"performance-suite-{_stamp()}",
        name="Performance Test Suite",
        description="Performance and load testing scenarios",
        parallel=False,
        continue_on_error=True,
        timeout=10_800_000,
        retry_attempts=0,
        environment={"PERFORMANCE_MODE": "true"},
        commands=tuple(commands),
    )


_BUILDERS = {
    "basic": _basic,
    "ci": _ci,
    "regression": _regression,
    "performance": _performance,
}


def generate_template(name: str = "basic") -> BatchJob:
    builder = _BUILDERS.get(name)
    if builder is None:
        raise ConfigError(
            f"Unknown template '{name}'. Available: {', '.join(TEMPLATE_NAMES)}"
        )
    return builder()
