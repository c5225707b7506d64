"""Runner - Drives the Executor, Comparator and Reporter over a corpus.

Cases run one at a time by default. With jobs > 1, up to `jobs` cases are in
flight on a thread pool; verdicts are still reported strictly in corpus
order, and only a bounded window of cases is read ahead of the reporter.
"""

from __future__ import annotations

import sys
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable

from path_parity.artifact_writer import ArtifactWriter
from path_parity.comparator import Comparator
from path_parity.corpus_reader import check_prefix
from path_parity.executor import Executor, FetchError
from path_parity.models import EndpointRole, Outcome, TestCase, Verdict
from path_parity.reporter import Reporter


@dataclass
class RunStats:
    """Statistics for a run."""

    total_cases: int = 0
    matches: int = 0
    mismatches: int = 0
    fetch_failures: int = 0
    rejected: int = 0
    prefix_warnings: int = 0
    # Set to True if run was interrupted (SIGINT)
    interrupted: bool = False

    def record(self, verdict: Verdict) -> None:
        """Count one verdict."""
        self.total_cases += 1
        if verdict.outcome == Outcome.MATCH:
            self.matches += 1
        elif verdict.outcome == Outcome.MISMATCH:
            self.mismatches += 1
        elif verdict.outcome == Outcome.FETCH_FAILURE:
            self.fetch_failures += 1
        else:
            self.rejected += 1

    @property
    def passed(self) -> bool:
        """True only if every reported case matched and the run completed."""
        return not self.interrupted and self.matches == self.total_cases


class Runner:
    """Runs every case of a corpus through fetch, compare and report.

    Usage:
        runner = Runner(executor, Comparator(), Reporter())
        stats = RunStats()
        runner.run(CorpusReader(path), stats)
    """

    def __init__(
        self,
        executor: Executor,
        comparator: Comparator,
        reporter: Reporter,
        writer: ArtifactWriter | None = None,
        expected_prefix: str | None = None,
        strict_prefix: bool = False,
        jobs: int = 1,
        on_verdict: Callable[[Verdict], None] | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            executor: Fetches both endpoints (caller owns lifecycle).
            comparator: Compares the two bodies.
            reporter: Writes the transcript.
            writer: If set, bodies of mismatched cases are persisted.
            expected_prefix: Prefix every corpus line should start with.
            strict_prefix: Reject lines without expected_prefix instead of
                           only warning about them.
            jobs: Maximum number of cases in flight.
            on_verdict: Called after each verdict is reported (e.g. progress).
        """
        if jobs < 1:
            raise ValueError(f"jobs must be >= 1, got {jobs}")
        self._executor = executor
        self._comparator = comparator
        self._reporter = reporter
        self._writer = writer
        self._expected_prefix = expected_prefix
        self._strict_prefix = strict_prefix
        self._jobs = jobs
        self._on_verdict = on_verdict

    def run(self, cases: Iterable[TestCase], stats: RunStats) -> RunStats:
        """Run every case and report verdicts in corpus order.

        stats is updated as verdicts are reported, so it is accurate even if
        KeyboardInterrupt propagates out of this method.
        """
        if self._jobs == 1:
            for case in cases:
                self._check_prefix(case, stats)
                self._emit(self.evaluate(case), stats)
        else:
            self._run_parallel(cases, stats)
        return stats

    def _run_parallel(self, cases: Iterable[TestCase], stats: RunStats) -> None:
        window = self._jobs * 2
        pending: deque[Future[Verdict]] = deque()
        pool = ThreadPoolExecutor(max_workers=self._jobs, thread_name_prefix="case")
        try:
            for case in cases:
                self._check_prefix(case, stats)
                pending.append(pool.submit(self.evaluate, case))
                if len(pending) >= window:
                    self._emit(pending.popleft().result(), stats)
            while pending:
                self._emit(pending.popleft().result(), stats)
        finally:
            # Cases not yet reported are dropped, never half-reported.
            pool.shutdown(wait=True, cancel_futures=True)

    def _check_prefix(self, case: TestCase, stats: RunStats) -> None:
        if self._strict_prefix or check_prefix(case, self._expected_prefix):
            return
        stats.prefix_warnings += 1
        print(
            f"Warning: case [{case.index}] does not start with expected prefix "
            f"'{self._expected_prefix}': {case.path}",
            file=sys.stderr,
        )

    def _emit(self, verdict: Verdict, stats: RunStats) -> None:
        # Counted before it is written: a printed verdict is always in the footer.
        stats.record(verdict)
        self._reporter.report(verdict)
        if self._on_verdict is not None:
            self._on_verdict(verdict)

    def evaluate(self, case: TestCase) -> Verdict:
        """Fetch, compare and build the verdict for one case.

        Fetch failures become a fetch_failure verdict; they never reach the
        Comparator.
        """
        if self._strict_prefix and not check_prefix(case, self._expected_prefix):
            return Verdict(
                case=case,
                outcome=Outcome.REJECTED,
                reason=f"does not start with expected prefix '{self._expected_prefix}'",
            )

        try:
            reference, candidate = self._executor.execute(case)
        except FetchError as e:
            reference_capture = e.captures.get(EndpointRole.REFERENCE)
            candidate_capture = e.captures.get(EndpointRole.CANDIDATE)
            return Verdict(
                case=case,
                outcome=Outcome.FETCH_FAILURE,
                failures=e.failures,
                reference_status=reference_capture.status_code if reference_capture else None,
                candidate_status=candidate_capture.status_code if candidate_capture else None,
            )

        comparison = self._comparator.compare(reference.body, candidate.body)
        verdict = Verdict(
            case=case,
            outcome=Outcome.MATCH if comparison.match else Outcome.MISMATCH,
            comparison=comparison,
            reference_status=reference.status_code,
            candidate_status=candidate.status_code,
        )

        if self._writer is not None and not comparison.match:
            try:
                self._writer.write_case(verdict, reference, candidate)
            except OSError as e:
                print(
                    f"Warning: could not save bodies for case [{case.index}]: {e}",
                    file=sys.stderr,
                )

        return verdict
