"""Comparator - Decides whether two response bodies are equivalent.

Bodies are compared after a whitespace normalization pass: every ASCII
whitespace byte (space, tab, CR, LF, vertical tab, form feed) is removed, so
indentation, spacing, line endings and line-break placement never cause a
mismatch. Every other byte must match exactly.

The line-level diff shown on mismatch is computed over the normalized lines
with difflib, so it is independent of any external diff tool.
"""

from __future__ import annotations

import difflib
import re

from path_parity.models import ComparisonResult

DEFAULT_DIFF_CONTEXT = 3

# Bytes regex: \s only matches ASCII whitespace here. Non-breaking spaces and
# other multi-byte whitespace are content.
_WHITESPACE = re.compile(rb"\s+")

# Normalized bytes shown on each side of the first divergence.
_EXCERPT_RADIUS = 30


class ComparatorError(Exception):
    """Base class for comparator errors."""


def normalize(body: bytes) -> list[bytes]:
    """Strip all whitespace from each line and drop lines left empty."""
    lines = (_WHITESPACE.sub(b"", line) for line in body.splitlines())
    return [line for line in lines if line]


def _render(line: bytes) -> str:
    """Decode for display. Invalid UTF-8 shows as backslash escapes."""
    return line.decode("utf-8", errors="backslashreplace")


def _first_divergence(reference: bytes, candidate: bytes) -> str:
    """Describe where two normalized byte strings first differ."""
    offset = 0
    limit = min(len(reference), len(candidate))
    while offset < limit and reference[offset] == candidate[offset]:
        offset += 1

    start = max(0, offset - _EXCERPT_RADIUS)
    end = offset + _EXCERPT_RADIUS
    ref_excerpt = _render(reference[start:end])
    cand_excerpt = _render(candidate[start:end])
    return (
        f"first difference at normalized offset {offset}: "
        f"reference {ref_excerpt!r} vs candidate {cand_excerpt!r}"
    )


class Comparator:
    """Compares reference and candidate bodies under whitespace normalization.

    Usage:
        comparator = Comparator()
        result = comparator.compare(reference.body, candidate.body)
        if not result.match:
            print("\\n".join(result.diff))
    """

    def __init__(self, diff_context: int = DEFAULT_DIFF_CONTEXT) -> None:
        """Initialize the Comparator.

        Args:
            diff_context: Number of unchanged context lines around each diff hunk.
        """
        if diff_context < 0:
            raise ComparatorError(f"diff_context must be >= 0, got {diff_context}")
        self._diff_context = diff_context

    def compare(self, reference: bytes, candidate: bytes) -> ComparisonResult:
        """Compare two raw bodies.

        Byte counts in the result are those of the raw, unnormalized bodies,
        so size differences stay visible even when the bodies match.
        """
        reference_lines = normalize(reference)
        candidate_lines = normalize(candidate)

        reference_flat = b"".join(reference_lines)
        candidate_flat = b"".join(candidate_lines)

        if reference_flat == candidate_flat:
            return ComparisonResult(
                match=True,
                reference_bytes=len(reference),
                candidate_bytes=len(candidate),
            )

        return ComparisonResult(
            match=False,
            reference_bytes=len(reference),
            candidate_bytes=len(candidate),
            diff=self._diff(reference_lines, candidate_lines),
            first_divergence=_first_divergence(reference_flat, candidate_flat),
        )

    def _diff(self, reference_lines: list[bytes], candidate_lines: list[bytes]) -> list[str]:
        """Unified diff of normalized lines, without trailing newlines."""
        diff = self._unified(
            [_render(line) for line in reference_lines],
            [_render(line) for line in candidate_lines],
        )
        if not diff:
            # Rendering collapsed distinct bytes (e.g. b"\xff" vs a literal
            # "\xff"); fall back to byte reprs.
            diff = self._unified(
                [repr(line) for line in reference_lines],
                [repr(line) for line in candidate_lines],
            )
        return diff

    def _unified(self, reference: list[str], candidate: list[str]) -> list[str]:
        return list(difflib.unified_diff(
            reference,
            candidate,
            fromfile="reference",
            tofile="candidate",
            n=self._diff_context,
            lineterm="",
        ))
