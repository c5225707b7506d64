"""Reporter - Writes one transcript entry per Verdict, in corpus order.

Two modes:
    summary  One "OK" line per match; a blank-line separated block with byte
             counts and the diff for each mismatch.
    verbose  Every case prints its byte counts and its diff (empty for a
             match).

Fetch failures and rejected cases have their own shapes in both modes so
they are never mistaken for a content mismatch.
"""

from __future__ import annotations

import sys
from enum import Enum
from typing import TYPE_CHECKING, TextIO

from path_parity.models import ComparisonResult, EndpointRole, Outcome, Verdict

if TYPE_CHECKING:
    from path_parity.runner import RunStats


class ReportMode(str, Enum):
    """Transcript verbosity."""

    SUMMARY = "summary"
    VERBOSE = "verbose"


class Reporter:
    """Renders verdicts to a text stream.

    Each verdict is rendered to one string and written with a single call, so
    an interrupt never leaves half a verdict on screen.
    """

    def __init__(self, mode: ReportMode = ReportMode.SUMMARY, out: TextIO | None = None) -> None:
        self._mode = mode
        self._out = out

    @property
    def mode(self) -> ReportMode:
        return self._mode

    @property
    def _stream(self) -> TextIO:
        # Resolved per write so redirected sys.stdout (tests, run_cli) is honored.
        return self._out if self._out is not None else sys.stdout

    def report(self, verdict: Verdict) -> None:
        """Write the transcript entry for one verdict."""
        stream = self._stream
        stream.write(self.format_verdict(verdict))
        stream.flush()

    def format_verdict(self, verdict: Verdict) -> str:
        if verdict.outcome == Outcome.FETCH_FAILURE:
            return self._format_fetch_failure(verdict)
        if verdict.outcome == Outcome.REJECTED:
            return f"{self._label(verdict)} : REJECTED ({verdict.reason})\n"
        if self._mode == ReportMode.VERBOSE:
            return self._format_verbose(verdict)
        if verdict.outcome == Outcome.MATCH:
            return f"{self._label(verdict)} : OK\n"
        return self._format_mismatch_block(verdict)

    def report_summary(self, stats: RunStats) -> None:
        """Write the aggregate footer."""
        lines = [
            "",
            "=" * 60,
            f"Total cases:       {stats.total_cases}",
            f"  Matches:         {stats.matches}",
            f"  Mismatches:      {stats.mismatches}",
            f"  Fetch failures:  {stats.fetch_failures}",
        ]
        if stats.rejected:
            lines.append(f"  Rejected:        {stats.rejected}")
        if stats.interrupted:
            lines.append("Run interrupted before the corpus was exhausted")
        lines.append("PASS" if stats.passed else "FAIL")
        stream = self._stream
        stream.write("\n".join(lines) + "\n")
        stream.flush()

    @staticmethod
    def _label(verdict: Verdict) -> str:
        return f"[{verdict.case.index}] {verdict.case.path}"

    @staticmethod
    def _status_line(verdict: Verdict) -> str | None:
        """Status codes are informational; shown only when they differ."""
        if verdict.reference_status is None or verdict.candidate_status is None:
            return None
        if verdict.reference_status == verdict.candidate_status:
            return None
        return f"  status: {verdict.reference_status} / {verdict.candidate_status}"

    @staticmethod
    def _comparison(verdict: Verdict) -> ComparisonResult:
        if verdict.comparison is None:
            raise ValueError(
                f"{verdict.outcome.value} verdict for case [{verdict.case.index}] has no comparison"
            )
        return verdict.comparison

    def _format_mismatch_block(self, verdict: Verdict) -> str:
        comparison = self._comparison(verdict)
        lines = [
            "",
            f"{self._label(verdict)} : MISMATCH",
            f"  bytes: {comparison.reference_bytes} / {comparison.candidate_bytes}",
        ]
        status_line = self._status_line(verdict)
        if status_line:
            lines.append(status_line)
        if comparison.first_divergence:
            lines.append(f"  {comparison.first_divergence}")
        lines.extend(comparison.diff)
        lines.append("")
        return "\n".join(lines) + "\n"

    def _format_verbose(self, verdict: Verdict) -> str:
        comparison = self._comparison(verdict)
        marker = "OK" if comparison.match else "MISMATCH"
        lines = [
            f"{self._label(verdict)} : {comparison.reference_bytes} / "
            f"{comparison.candidate_bytes} {marker}"
        ]
        status_line = self._status_line(verdict)
        if status_line:
            lines.append(status_line)
        lines.extend(comparison.diff)
        return "\n".join(lines) + "\n"

    def _format_fetch_failure(self, verdict: Verdict) -> str:
        lines = ["", f"{self._label(verdict)} : FETCH FAILED"]
        for role in (EndpointRole.REFERENCE, EndpointRole.CANDIDATE):
            message = verdict.failures.get(role)
            if message is not None:
                lines.append(f"  {role.value}: {message}")
        lines.append("")
        return "\n".join(lines) + "\n"
