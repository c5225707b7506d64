"""In-process CLI runner for integration tests.

Running the CLI via subprocess.run() adds Python startup overhead per
invocation. run_cli() calls the CLI dispatch logic directly in-process,
capturing stdout/stderr the same way subprocess would.

Usage:
    from tests.integration.cli_runner import run_cli

    result = run_cli("run", "--corpus", str(corpus), "--reference", url_a, ...)
    assert result.returncode == 0
"""

from __future__ import annotations

import sys
import traceback
from dataclasses import dataclass
from io import StringIO


@dataclass
class CLIResult:
    """Result of an in-process CLI invocation, matching subprocess interface."""

    returncode: int
    stdout: str
    stderr: str


def run_cli(*args: str) -> CLIResult:
    """Run the path-parity CLI in-process, capturing stdout/stderr."""
    from path_parity.cli import dispatch, parse_args

    old_stdout = sys.stdout
    old_stderr = sys.stderr

    captured_stdout = StringIO()
    captured_stderr = StringIO()

    sys.stdout = captured_stdout
    sys.stderr = captured_stderr

    try:
        parsed = parse_args(list(args))
        returncode = dispatch(parsed)

    except SystemExit as e:
        # argparse calls sys.exit on parse errors
        returncode = e.code if isinstance(e.code, int) else 1
    except KeyboardInterrupt:
        returncode = 1
    except Exception as e:
        captured_stderr.write(f"Unexpected error: {e}\n")
        captured_stderr.write(traceback.format_exc())
        returncode = 1
    finally:
        stdout_val = captured_stdout.getvalue()
        stderr_val = captured_stderr.getvalue()
        sys.stdout = old_stdout
        sys.stderr = old_stderr

    return CLIResult(returncode=returncode, stdout=stdout_val, stderr=stderr_val)
