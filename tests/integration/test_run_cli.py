"""Integration tests for the run command against live mock servers.

Flow: start the reference and candidate mock servers once per session, write
a corpus to tmp_path, run the CLI in-process and inspect the transcript and
exit code.
"""

from pathlib import Path

from tests.conftest import write_corpus
from tests.integration.cli_runner import run_cli

MATCHING_LINES = (
    "geohack.php?pagename=Test&params=10_N_20_E",
    "geohack.php?pagename=Berlin&params=52.5_N_13.4_E",
    "geohack.php?pagename=Null&params=0_N_0_E",
)
DRIFT_LINE = "geohack.php?pagename=Drift&params=10.0_N_20_E"


def _run(servers, corpus: Path, *extra: str):
    return run_cli(
        "run",
        "--corpus", str(corpus),
        "--reference", servers["reference"].base_url,
        "--candidate", servers["candidate"].base_url,
        "--timeout", "10",
        *extra,
    )


class TestRunMatches:
    def test_whitespace_only_differences_pass(self, fixture_dual_mock_servers, tmp_path):
        corpus = write_corpus(tmp_path, *MATCHING_LINES)

        result = _run(fixture_dual_mock_servers, corpus)

        assert result.returncode == 0, result.stderr
        for index, line in enumerate(MATCHING_LINES, 1):
            assert f"[{index}] {line} : OK" in result.stdout
        assert "Matches:         3" in result.stdout
        assert "PASS" in result.stdout

    def test_empty_bodies_match(self, fixture_dual_mock_servers, tmp_path):
        corpus = write_corpus(tmp_path, "empty")

        result = _run(fixture_dual_mock_servers, corpus)

        assert result.returncode == 0, result.stderr
        assert "[1] empty : OK" in result.stdout

    def test_status_code_is_not_inspected(self, fixture_dual_mock_servers, tmp_path):
        corpus = write_corpus(tmp_path, "teapot")

        result = _run(fixture_dual_mock_servers, corpus, "--mode", "verbose")

        assert result.returncode == 0, result.stderr
        assert "[1] teapot : 10 / 10 OK" in result.stdout
        assert "status: 200 / 418" in result.stdout

    def test_verbose_mode_prints_byte_counts_for_matches(self, fixture_dual_mock_servers, tmp_path):
        corpus = write_corpus(tmp_path, MATCHING_LINES[0])

        result = _run(fixture_dual_mock_servers, corpus, "--mode", "verbose")

        assert result.returncode == 0
        line = next(l for l in result.stdout.splitlines() if l.startswith("[1]"))
        counts = line.split(" : ", 1)[1]
        reference_bytes, rest = counts.split(" / ")
        candidate_bytes = rest.split()[0]
        # Pretty-printed reference is larger than the compact candidate
        assert int(reference_bytes) > int(candidate_bytes)
        assert line.endswith("OK")


class TestRunMismatches:
    def test_content_drift_is_reported_with_diff(self, fixture_dual_mock_servers, tmp_path):
        corpus = write_corpus(tmp_path, MATCHING_LINES[0], DRIFT_LINE, MATCHING_LINES[1])

        result = _run(fixture_dual_mock_servers, corpus)

        assert result.returncode == 1
        assert f"[2] {DRIFT_LINE} : MISMATCH" in result.stdout
        assert "--- reference" in result.stdout
        assert "+++ candidate" in result.stdout
        assert "10.000000" in result.stdout
        # Cases after the mismatch still run
        assert f"[3] {MATCHING_LINES[1]} : OK" in result.stdout
        assert "Mismatches:      1" in result.stdout
        assert "FAIL" in result.stdout

    def test_out_dir_receives_mismatch_bodies(self, fixture_dual_mock_servers, tmp_path):
        corpus = write_corpus(tmp_path, MATCHING_LINES[0], DRIFT_LINE)
        out = tmp_path / "artifacts"

        result = _run(fixture_dual_mock_servers, corpus, "--out", str(out))

        assert result.returncode == 1
        case_dirs = list((out / "mismatches").iterdir())
        assert len(case_dirs) == 1
        assert case_dirs[0].name.startswith("000002__")
        assert b"10.000000" in (case_dirs[0] / "candidate.body").read_bytes()
        assert b"10.0<" in (case_dirs[0] / "reference.body").read_bytes()

    def test_rerun_is_idempotent(self, fixture_dual_mock_servers, tmp_path):
        corpus = write_corpus(tmp_path, *MATCHING_LINES, DRIFT_LINE)

        first = _run(fixture_dual_mock_servers, corpus)
        second = _run(fixture_dual_mock_servers, corpus)

        assert first.returncode == second.returncode == 1
        assert first.stdout == second.stdout


class TestRunFetchFailures:
    def test_unreachable_candidate_does_not_stop_run(
        self, fixture_dual_mock_servers, unreachable_base_url, tmp_path
    ):
        corpus = write_corpus(tmp_path, *MATCHING_LINES)

        result = run_cli(
            "run",
            "--corpus", str(corpus),
            "--reference", fixture_dual_mock_servers["reference"].base_url,
            "--candidate", unreachable_base_url,
            "--timeout", "5",
        )

        assert result.returncode == 1
        for index, line in enumerate(MATCHING_LINES, 1):
            assert f"[{index}] {line} : FETCH FAILED" in result.stdout
        assert "candidate: connection error" in result.stdout
        # The reference side responded, so only the candidate is listed
        assert "  reference:" not in result.stdout
        assert "Fetch failures:  3" in result.stdout

    def test_missing_corpus_is_fatal(self, fixture_dual_mock_servers, tmp_path):
        result = _run(fixture_dual_mock_servers, tmp_path / "missing.txt")

        assert result.returncode == 1
        assert "Error reading corpus" in result.stderr
        assert result.stdout == ""


class TestRunConcurrency:
    def test_jobs_keep_corpus_order(self, fixture_dual_mock_servers, tmp_path):
        lines = [f"geohack.php?pagename=Page{i}&params={i}_N_{i}_E" for i in range(1, 13)]
        corpus = write_corpus(tmp_path, *lines)

        result = _run(fixture_dual_mock_servers, corpus, "--jobs", "4", "--concurrent-fetch")

        assert result.returncode == 0, result.stdout
        reported = [l for l in result.stdout.splitlines() if l.startswith("[")]
        assert reported == [f"[{i}] {line} : OK" for i, line in enumerate(lines, 1)]

    def test_serial_and_parallel_runs_agree(self, fixture_dual_mock_servers, tmp_path):
        corpus = write_corpus(tmp_path, *MATCHING_LINES, DRIFT_LINE)

        serial = _run(fixture_dual_mock_servers, corpus)
        parallel = _run(fixture_dual_mock_servers, corpus, "--jobs", "3")

        assert serial.returncode == parallel.returncode
        assert serial.stdout == parallel.stdout
