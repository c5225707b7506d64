"""Artifact Writer - Persists captured bodies for external inspection.

Each mismatched case gets its own directory under the output directory,
named from the case index and path, so concurrent cases never write to the
same files:

    <out>/mismatches/000012__geohack.php_pagename_Test/
        reference.body
        candidate.body
        case.json
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from path_parity.models import ResponseCapture, TestCase, Verdict

# Version of the tool (used in case.json)
TOOL_VERSION = "0.1.0"


class ArtifactWriter:
    """Writes per-case body artifacts to disk.

    Usage:
        writer = ArtifactWriter(Path("./artifacts"))
        case_dir = writer.write_case(verdict, reference_capture, candidate_capture)
    """

    def __init__(self, output_dir: Path) -> None:
        """Initialize the artifact writer.

        Args:
            output_dir: Base directory for artifacts. Created if missing.
        """
        self._output_dir = output_dir
        self._mismatches_dir = output_dir / "mismatches"
        self._mismatches_dir.mkdir(parents=True, exist_ok=True)

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def case_dir(self, case: TestCase) -> Path:
        """Directory holding the artifacts of one case."""
        name = f"{case.index:06d}__{self._sanitize_filename(case.path)}"
        return self._mismatches_dir / name

    def write_case(
        self,
        verdict: Verdict,
        reference: ResponseCapture,
        candidate: ResponseCapture,
    ) -> Path:
        """Write both bodies and a case.json description.

        Returns:
            Path to the case directory.
        """
        case_dir = self.case_dir(verdict.case)
        case_dir.mkdir(parents=True, exist_ok=True)

        self._write_bytes(case_dir / "reference.body", reference.body)
        self._write_bytes(case_dir / "candidate.body", candidate.body)

        case_data = {
            "tool_version": TOOL_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "index": verdict.case.index,
            "path": verdict.case.path,
            "outcome": verdict.outcome.value,
            "reference": self._capture_info(reference),
            "candidate": self._capture_info(candidate),
        }
        if verdict.comparison is not None:
            case_data["diff"] = verdict.comparison.diff
            case_data["first_divergence"] = verdict.comparison.first_divergence
        self._write_json(case_dir / "case.json", case_data)

        return case_dir

    @staticmethod
    def _capture_info(capture: ResponseCapture) -> dict[str, Any]:
        return {
            "status_code": capture.status_code,
            "bytes": capture.byte_count,
            "elapsed_ms": round(capture.elapsed_ms, 3),
        }

    def _write_bytes(self, path: Path, data: bytes) -> None:
        """Write bytes atomically (temp file, then rename)."""
        temp_path = path.with_suffix(path.suffix + ".tmp")
        with open(temp_path, "wb") as f:
            f.write(data)
        temp_path.replace(path)

    def _write_json(self, path: Path, data: Any) -> None:
        """Write data as JSON atomically."""
        temp_path = path.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
            f.write("\n")
        temp_path.replace(path)

    def _sanitize_filename(self, name: str) -> str:
        """Sanitize a string for use in filenames."""
        # Replace unsafe characters with underscores
        safe = re.sub(r"[^\w\-.]", "_", name)
        # Collapse multiple underscores
        safe = re.sub(r"_+", "_", safe)
        safe = safe.strip("_")
        if len(safe) > 50:
            safe = safe[:50]
        return safe or "unnamed"
