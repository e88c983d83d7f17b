"""
RouteAudit - Output artifacts
JSON files are replaced atomically so a killed run never leaves a truncated
document behind.
"""

import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any

# Artifact names
QUICK_SNAPSHOT_FILE = "crawl-quick.json"
DEEP_SNAPSHOT_FILE = "crawl-deep.json"
FINDINGS_FILE = "findings-{mode}.json"
FINGERPRINTS_FILE = "fingerprints-{mode}.json"
SUMMARY_FILE = "summary-{mode}.json"


def utc_timestamp() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def write_json_atomic(path: Path, data: Any) -> Path:
    """Write data as indented UTF-8 JSON via a temp file in the same directory."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise
    return path


def read_json(path: Path) -> Any:
    with Path(path).open("r", encoding="utf-8") as f:
        return json.load(f)
