"""Corpus Reader - Supplies TestCases from a line-oriented corpus file.

Each non-empty line (after trimming) is one request path. Lines starting
with '#' are comments. The whole file is read and decoded once when the
reader is created, so an unreadable corpus fails before any case runs;
lines are then yielded lazily in file order.
"""

from __future__ import annotations

from pathlib import Path
from typing import IO, Any, Iterator

from path_parity.models import TestCase

COMMENT_PREFIX = "#"


class CorpusError(Exception):
    """Base class for corpus errors."""


class CorpusUnavailable(CorpusError):
    """Raised when the corpus file cannot be opened or read."""


def _usable(raw_line: str) -> str | None:
    line = raw_line.strip()
    if not line or line.startswith(COMMENT_PREFIX):
        return None
    return line


class CorpusReader:
    """Single-pass reader over a corpus file.

    Usage:
        with CorpusReader(Path("test_params.txt")) as reader:
            print(f"{reader.total} cases")
            for case in reader:
                ...

    Iterating a second time yields nothing; open a new reader to re-read.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._file: IO[str] | None = None
        self._count = 0
        try:
            self._file = open(path, "r", encoding="utf-8")
        except OSError as e:
            raise CorpusUnavailable(f"Cannot open corpus {path}: {e.strerror or e}") from e

        try:
            self._total = self._scan(self._file)
        except CorpusUnavailable:
            self.close()
            raise

    @property
    def path(self) -> Path:
        return self._path

    @property
    def total(self) -> int:
        """Number of usable lines in the corpus."""
        return self._total

    def __enter__(self) -> "CorpusReader":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def _scan(self, corpus_file: IO[str]) -> int:
        """Decode every line once, then rewind for iteration."""
        try:
            total = sum(1 for raw_line in corpus_file if _usable(raw_line) is not None)
            corpus_file.seek(0)
        except (OSError, UnicodeDecodeError) as e:
            raise CorpusUnavailable(f"Cannot read corpus {self._path}: {e}") from e
        return total

    def __iter__(self) -> Iterator[TestCase]:
        return self._cases()

    def _cases(self) -> Iterator[TestCase]:
        if self._file is None:
            return
        try:
            for raw_line in self._file:
                line = _usable(raw_line)
                if line is None:
                    continue
                self._count += 1
                yield TestCase(index=self._count, path=line)
        except (OSError, UnicodeDecodeError) as e:
            raise CorpusUnavailable(f"Cannot read corpus {self._path}: {e}") from e
        finally:
            self.close()


def read_corpus(path: Path) -> Iterator[TestCase]:
    """Yield TestCases from path. Raises CorpusUnavailable before the first case."""
    reader = CorpusReader(path)
    return iter(reader)


def check_prefix(case: TestCase, prefix: str | None) -> bool:
    """True if the case path starts with prefix (always True when prefix is unset)."""
    if not prefix:
        return True
    return case.path.startswith(prefix)
