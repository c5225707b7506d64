"""CLI entry point for path-parity.

Handles argument parsing and dispatches to run or list-cases mode.
"""

from __future__ import annotations

import argparse
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from path_parity.reporter import ReportMode

DEFAULT_TIMEOUT = 30.0


class ProgressReporter:
    """Writes a "[Progress] done/total cases" line to stderr at a fixed interval.

    Runs on a daemon thread between start() and stop(); increment() is called
    once per reported verdict.
    """

    def __init__(self, total: int | None = None, interval: float = 10.0) -> None:
        self._total = total
        self._interval = interval
        self._done = 0
        self._started = 0.0
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._width = 0

    def start(self) -> None:
        self._started = time.monotonic()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="progress", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the thread and erase the progress line."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        if self._width:
            sys.stderr.write("\r" + " " * self._width + "\r")
            sys.stderr.flush()
            self._width = 0

    def increment(self) -> None:
        with self._lock:
            self._done += 1

    def status_line(self) -> str:
        with self._lock:
            done = self._done
        elapsed = time.monotonic() - self._started
        rate = done / elapsed if elapsed > 0 else 0.0
        counted = f"{done}/{self._total}" if self._total is not None else str(done)
        return f"[Progress] {counted} cases | {rate:.1f}/s | {elapsed:.0f}s elapsed"

    def _loop(self) -> None:
        while not self._stop_event.wait(timeout=self._interval):
            self._write(self.status_line())

    def _write(self, line: str) -> None:
        # Pad over a longer previous line
        padded = line.ljust(self._width)
        self._width = len(line)
        sys.stderr.write("\r" + padded)
        sys.stderr.flush()


def positive_float(value: str) -> float:
    """Parse and validate a positive float value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive number.
    """
    try:
        result = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number '{value}'.")
    if result <= 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got {result}.")
    return result


def positive_int(value: str) -> int:
    """Parse and validate a positive integer value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive integer.
    """
    try:
        result = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid integer '{value}'.")
    if result <= 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got {result}.")
    return result


def non_negative_int(value: str) -> int:
    """Parse and validate an integer >= 0."""
    try:
        result = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid integer '{value}'.")
    if result < 0:
        raise argparse.ArgumentTypeError(f"Value must not be negative, got {result}.")
    return result


@dataclass
class RunArgs:
    """Parsed arguments for run mode.

    timeout, rate_limit and prefix are None when not given on the command
    line, so config values (or defaults) apply.
    """

    corpus: Path
    config: Path | None
    reference: str | None
    candidate: str | None
    mode: ReportMode
    timeout: float | None
    jobs: int
    concurrent_fetch: bool
    rate_limit: float | None
    prefix: str | None
    strict_prefix: bool
    out: Path | None
    diff_context: int
    progress: bool


@dataclass
class ListCasesArgs:
    """Parsed arguments for list-cases mode."""

    corpus: Path
    config: Path | None
    prefix: str | None


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with run and list-cases subcommands."""
    parser = argparse.ArgumentParser(
        prog="path-parity",
        description=(
            "Differential testing harness: replays a corpus of request paths against a "
            "reference and a candidate endpoint and compares the response bodies."
        ),
    )

    subparsers = parser.add_subparsers(dest="command", required=True, help="Execution mode")

    # Run subcommand
    run_parser = subparsers.add_parser(
        "run",
        help="Fetch every corpus path from both endpoints and compare the bodies",
    )
    _add_corpus_args(run_parser)
    run_parser.add_argument(
        "--reference",
        type=str,
        default=None,
        metavar="URL",
        help="Base URL of the reference endpoint (overrides config)",
    )
    run_parser.add_argument(
        "--candidate",
        type=str,
        default=None,
        metavar="URL",
        help="Base URL of the candidate endpoint (overrides config)",
    )
    run_parser.add_argument(
        "--mode",
        type=str,
        choices=[mode.value for mode in ReportMode],
        default=ReportMode.SUMMARY.value,
        help=(
            "summary: one OK line per match, details for mismatches; "
            "verbose: byte counts and diff for every case (default: summary)"
        ),
    )
    run_parser.add_argument(
        "--timeout",
        type=positive_float,
        default=None,
        metavar="SECONDS",
        help=f"Timeout for each request (default: config value or {DEFAULT_TIMEOUT}s)",
    )
    run_parser.add_argument(
        "--jobs",
        type=positive_int,
        default=1,
        metavar="N",
        help="Number of cases to run concurrently; output stays in corpus order (default: 1)",
    )
    run_parser.add_argument(
        "--concurrent-fetch",
        action="store_true",
        default=False,
        dest="concurrent_fetch",
        help="Fetch reference and candidate at the same time instead of one after the other",
    )
    run_parser.add_argument(
        "--rate-limit",
        type=positive_float,
        default=None,
        dest="rate_limit",
        metavar="RPS",
        help="Maximum requests per second across both endpoints (overrides config)",
    )
    run_parser.add_argument(
        "--strict-prefix",
        action="store_true",
        default=False,
        dest="strict_prefix",
        help="Reject corpus lines without the expected prefix instead of warning",
    )
    run_parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Directory to save the bodies of mismatched cases",
    )
    run_parser.add_argument(
        "--diff-context",
        type=non_negative_int,
        default=3,
        dest="diff_context",
        metavar="LINES",
        help="Context lines around each diff hunk (default: 3)",
    )
    run_parser.add_argument(
        "--progress",
        action="store_true",
        default=False,
        help="Print progress to stderr every 10 seconds",
    )

    # List-cases subcommand
    list_parser = subparsers.add_parser(
        "list-cases",
        help="List the cases a run would execute and flag lines without the expected prefix",
    )
    _add_corpus_args(list_parser)

    return parser


def _add_corpus_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--corpus",
        type=Path,
        required=True,
        help="Path to the corpus file (one request path per line)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to runtime configuration file (YAML)",
    )
    parser.add_argument(
        "--prefix",
        type=str,
        default=None,
        help="Prefix every corpus line is expected to start with, e.g. 'geohack.php?'",
    )


def parse_run_args(namespace: argparse.Namespace) -> RunArgs:
    """Convert parsed namespace to RunArgs dataclass."""
    return RunArgs(
        corpus=namespace.corpus,
        config=namespace.config,
        reference=namespace.reference,
        candidate=namespace.candidate,
        mode=ReportMode(namespace.mode),
        timeout=namespace.timeout,
        jobs=namespace.jobs,
        concurrent_fetch=namespace.concurrent_fetch,
        rate_limit=namespace.rate_limit,
        prefix=namespace.prefix,
        strict_prefix=namespace.strict_prefix,
        out=namespace.out,
        diff_context=namespace.diff_context,
        progress=namespace.progress,
    )


def parse_list_cases_args(namespace: argparse.Namespace) -> ListCasesArgs:
    """Convert parsed namespace to ListCasesArgs dataclass."""
    return ListCasesArgs(
        corpus=namespace.corpus,
        config=namespace.config,
        prefix=namespace.prefix,
    )


def parse_args(args: list[str] | None = None) -> RunArgs | ListCasesArgs:
    """Parse command-line arguments and return typed args dataclass.

    Args:
        args: Command-line arguments to parse. If None, uses sys.argv[1:].

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    parser = build_parser()
    namespace = parser.parse_args(args)

    if namespace.command == "run":
        return parse_run_args(namespace)
    elif namespace.command == "list-cases":
        return parse_list_cases_args(namespace)
    else:
        # Should not happen with required=True on subparsers
        parser.error(f"Unknown command: {namespace.command}")


def dispatch(parsed: RunArgs | ListCasesArgs) -> int:
    """Run the mode selected by parsed arguments and return the exit code."""
    if isinstance(parsed, RunArgs):
        return run_parity(parsed)
    return run_list_cases(parsed)


def main() -> int:
    """Main entry point."""
    try:
        return dispatch(parse_args())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


def run_list_cases(args: ListCasesArgs) -> int:
    """Run list-cases mode.

    Prints every usable corpus line with its case index. Exit status is 1
    if the corpus cannot be read or a line lacks the expected prefix.
    """
    from path_parity.config_loader import ConfigError, load_runtime_config
    from path_parity.corpus_reader import CorpusError, CorpusReader, check_prefix

    prefix = args.prefix
    if prefix is None and args.config is not None:
        try:
            prefix = load_runtime_config(args.config).expected_prefix
        except ConfigError as e:
            print(f"Error loading config: {e}", file=sys.stderr)
            return 1

    total = 0
    malformed = 0
    try:
        with CorpusReader(args.corpus) as reader:
            for case in reader:
                total += 1
                if check_prefix(case, prefix):
                    print(f"[{case.index}] {case.path}")
                else:
                    malformed += 1
                    print(f"[{case.index}] {case.path}  <- missing prefix '{prefix}'")
    except CorpusError as e:
        print(f"Error reading corpus: {e}", file=sys.stderr)
        return 1

    print()
    total_msg = f"Total: {total} cases"
    if malformed:
        total_msg += f" ({malformed} without prefix '{prefix}')"
    print(total_msg)
    return 1 if malformed else 0


def run_parity(args: RunArgs) -> int:
    """Run mode.

    Fetches each corpus path from both endpoints, compares the bodies and
    prints one verdict per case. Returns 0 only if every case matched.
    """
    from path_parity.artifact_writer import ArtifactWriter
    from path_parity.comparator import Comparator
    from path_parity.config_loader import ConfigError, load_runtime_config, resolve_targets
    from path_parity.corpus_reader import CorpusError, CorpusReader
    from path_parity.executor import Executor, ExecutorError
    from path_parity.models import RuntimeConfig
    from path_parity.reporter import Reporter
    from path_parity.runner import Runner, RunStats

    # Load configuration
    if args.config is not None:
        try:
            runtime_config = load_runtime_config(args.config)
        except ConfigError as e:
            print(f"Error loading config: {e}", file=sys.stderr)
            return 1
    else:
        runtime_config = RuntimeConfig()

    try:
        reference_config, candidate_config = resolve_targets(
            runtime_config, args.reference, args.candidate
        )
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    timeout = args.timeout or runtime_config.timeout or DEFAULT_TIMEOUT
    rate_limit = args.rate_limit
    if rate_limit is None and runtime_config.rate_limit is not None:
        rate_limit = runtime_config.rate_limit.requests_per_second
    prefix = args.prefix if args.prefix is not None else runtime_config.expected_prefix

    if args.strict_prefix and not prefix:
        print("Warning: --strict-prefix has no effect without an expected prefix", file=sys.stderr)

    # The whole corpus is decoded here, before touching the network.
    try:
        reader = CorpusReader(args.corpus)
    except CorpusError as e:
        print(f"Error reading corpus: {e}", file=sys.stderr)
        return 1

    print(f"Run mode: corpus={args.corpus} ({reader.total} cases)", file=sys.stderr)
    print(f"  Reference: {reference_config.base_url}", file=sys.stderr)
    print(f"  Candidate: {candidate_config.base_url}", file=sys.stderr)
    print(f"  Report mode: {args.mode.value}", file=sys.stderr)
    print(f"  Timeout: {timeout}s", file=sys.stderr)
    if args.jobs > 1:
        print(f"  Jobs: {args.jobs}", file=sys.stderr)
    if rate_limit is not None:
        print(f"  Rate limit: {rate_limit} req/s", file=sys.stderr)
    if prefix:
        policy = "reject" if args.strict_prefix else "warn"
        print(f"  Expected prefix: '{prefix}' ({policy})", file=sys.stderr)
    if args.out is not None:
        print(f"  Output: {args.out}", file=sys.stderr)

    writer = None
    if args.out is not None:
        try:
            writer = ArtifactWriter(args.out)
        except OSError as e:
            reader.close()
            print(f"Error creating output directory: {e}", file=sys.stderr)
            return 1

    try:
        executor = Executor(
            reference_config,
            candidate_config,
            timeout=timeout,
            requests_per_second=rate_limit,
            concurrent_fetch=args.concurrent_fetch,
            jobs=args.jobs,
        )
    except ExecutorError as e:
        reader.close()
        print(f"Error: {e}", file=sys.stderr)
        return 1

    reporter = Reporter(mode=args.mode)
    stats = RunStats()

    progress_reporter: ProgressReporter | None = None
    if args.progress:
        progress_reporter = ProgressReporter(total=reader.total)
        progress_reporter.start()

    runner = Runner(
        executor=executor,
        comparator=Comparator(diff_context=args.diff_context),
        reporter=reporter,
        writer=writer,
        expected_prefix=prefix,
        strict_prefix=args.strict_prefix,
        jobs=args.jobs,
        on_verdict=(lambda _verdict: progress_reporter.increment()) if progress_reporter else None,
    )

    try:
        with executor, reader:
            runner.run(reader, stats)
    except CorpusError as e:
        print(f"\nFatal: {e}", file=sys.stderr)
        stats.interrupted = True
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        stats.interrupted = True
    finally:
        if progress_reporter is not None:
            progress_reporter.stop()

    if stats.total_cases == 0 and not stats.interrupted:
        print(f"Warning: no cases found in {args.corpus}", file=sys.stderr)

    reporter.report_summary(stats)
    if writer is not None and stats.mismatches:
        print(f"Mismatch bodies written to: {writer.output_dir / 'mismatches'}", file=sys.stderr)

    return 0 if stats.passed else 1


if __name__ == "__main__":
    sys.exit(main())
