from __future__ import annotations

import datetime as dt
import json
import logging
from pathlib import Path
from typing import Any

import yaml

_log = logging.getLogger("gocars_batch.utils")

JSON_SUFFIXES = (".json",)
YAML_SUFFIXES = (".yaml", ".yml")
DOCUMENT_SUFFIXES = (*JSON_SUFFIXES, *YAML_SUFFIXES)
_TRUNCATE_LIMIT = 8000


def utc_now_iso() -> str:
    return (
        dt.datetime.now(dt.timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def elapsed_ms(start_perf: float, end_perf: float) -> float:
    return round((end_perf - start_perf) * 1000.0, 3)


def truncate_text(value: str | None, *, limit: int = _TRUNCATE_LIMIT) -> str | None:
    if value is None:
        return None
    if len(value) <= limit:
        return value
    return value[:limit] + f"... [truncated {len(value) - limit} chars]"


def document_format(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix in JSON_SUFFIXES:
        return "json"
    if suffix in YAML_SUFFIXES:
        return "yaml"
    raise ValueError(f"Unsupported file format '{suffix or '<none>'}': {path}")


def load_document(path: Path) -> Any:
    """Parse a JSON or YAML file, choosing the parser by extension."""
    fmt = document_format(path)
    content = path.read_text(encoding="utf-8")
    if fmt == "json":
        return json.loads(content)
    return yaml.safe_load(content)


def render_document(value: Any, fmt: str) -> str:
    if fmt == "yaml":
        return yaml.safe_dump(value, sort_keys=False, indent=2)
    return json.dumps(value, indent=2) + "\n"


def atomic_write_text(path: Path, content: str) -> None:
    """Write *content* next to *path* first, then rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_name(f".{path.name}.tmp")
    try:
        staging.write_text(content, encoding="utf-8")
        staging.replace(path)
    except OSError:
        staging.unlink(missing_ok=True)
        raise
    _log.debug("wrote_file path=%s bytes=%d", path, len(content))
