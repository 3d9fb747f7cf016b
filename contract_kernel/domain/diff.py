"""
Structural diff engine (``contract_kernel.domain.diff``).

Responsibility
--------------
Computes the machine-generated changelog stored on every contract version
after the first.  A snapshot is split into ordered structural blocks
(paragraphs / clauses, HTML block tags treated as breaks); blocks are
aligned by longest common subsequence; each unmatched run is classified as
ADDED, REMOVED or MODIFIED, and modified blocks get a word-level sub-diff
computed by the same LCS routine.

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.  Used only by the
version ledger and the selector.

Invariants enforced
-------------------
* Deterministic -- the same pair of snapshots always yields the same
  changelog (ties in the LCS walk prefer deletions before insertions).
* ``diff_snapshots(x, x)`` has no entries and the summary
  ``"No changes made"``.
* ``block_index`` is the block's position in the new document for ADDED
  and MODIFIED entries and in the old document for REMOVED entries.
* The LCS table never exceeds ``max_cells`` entries.  A larger middle
  section is aligned as one delete run followed by one insert run, and the
  changelog carries ``ALIGNMENT_LIMIT_NOTE``.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

NO_CHANGES_SUMMARY = "No changes made"

DEFAULT_SIMILARITY_THRESHOLD = 0.5

# Upper bound on LCS table entries (rows x columns) per alignment.
DEFAULT_MAX_ALIGNMENT_CELLS = 4_000_000

ALIGNMENT_LIMIT_NOTE = "Clause alignment skipped: document exceeds the diff size limit"

_BLOCK_BREAK = re.compile(
    r"<br\s*/?>|</(?:p|div|li|h[1-6]|tr|blockquote|section|article|ul|ol|table)\s*>",
    re.IGNORECASE,
)
_TAG = re.compile(r"<[^>]*>")
_BLANK_LINE = re.compile(r"\n[ \t\f\v]*\n")


class ChangeKind(str, Enum):
    ADDED = "ADDED"
    REMOVED = "REMOVED"
    MODIFIED = "MODIFIED"


class WordOp(str, Enum):
    EQUAL = "equal"
    INSERT = "insert"
    DELETE = "delete"


@dataclass(frozen=True)
class WordSpan:
    op: WordOp
    text: str

    def to_dict(self) -> dict[str, str]:
        return {"op": self.op.value, "text": self.text}


@dataclass(frozen=True)
class BlockChange:
    block_index: int
    kind: ChangeKind
    before: str | None = None
    after: str | None = None
    word_diff: tuple[WordSpan, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"block_index": self.block_index, "kind": self.kind.value}
        if self.before is not None:
            data["before"] = self.before
        if self.after is not None:
            data["after"] = self.after
        if self.word_diff:
            data["word_diff"] = [span.to_dict() for span in self.word_diff]
        return data


@dataclass(frozen=True)
class DiffStats:
    blocks_added: int = 0
    blocks_removed: int = 0
    blocks_modified: int = 0
    blocks_unchanged: int = 0
    words_added: int = 0
    words_removed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "blocks_added": self.blocks_added,
            "blocks_removed": self.blocks_removed,
            "blocks_modified": self.blocks_modified,
            "blocks_unchanged": self.blocks_unchanged,
            "words_added": self.words_added,
            "words_removed": self.words_removed,
        }


@dataclass(frozen=True)
class ChangeLog:
    """Structured summary of the differences between two snapshots."""

    summary: str
    entries: tuple[BlockChange, ...] = ()
    stats: DiffStats = field(default_factory=DiffStats)
    notes: tuple[str, ...] = ()

    @property
    def has_changes(self) -> bool:
        return bool(self.entries)

    def with_note(self, note: str) -> ChangeLog:
        return ChangeLog(self.summary, self.entries, self.stats, self.notes + (note,))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "summary": self.summary,
            "entries": [entry.to_dict() for entry in self.entries],
            "stats": self.stats.to_dict(),
        }
        if self.notes:
            data["notes"] = list(self.notes)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChangeLog:
        entries = tuple(
            BlockChange(
                block_index=e["block_index"],
                kind=ChangeKind(e["kind"]),
                before=e.get("before"),
                after=e.get("after"),
                word_diff=tuple(
                    WordSpan(WordOp(w["op"]), w["text"]) for w in e.get("word_diff", ())
                ),
            )
            for e in data.get("entries", ())
        )
        return cls(
            summary=data["summary"],
            entries=entries,
            stats=DiffStats(**data.get("stats", {})),
            notes=tuple(data.get("notes", ())),
        )


@dataclass(frozen=True)
class VersionComparison:
    """Result of comparing two stored versions of one contract."""

    from_version: int
    to_version: int
    change_log: ChangeLog
    html_diff: str


# =========================================================================
# Block splitting
# =========================================================================


def split_blocks(snapshot: str) -> list[str]:
    """Split a snapshot into trimmed, non-empty structural blocks.

    Closing block tags and ``<br>`` act as paragraph breaks; remaining tags
    are stripped and entities unescaped.  Whitespace inside a block is
    collapsed to single spaces.
    """
    text = snapshot.replace("\r\n", "\n").replace("\r", "\n")
    text = _BLOCK_BREAK.sub("\n\n", text)
    text = _TAG.sub("", text)
    text = html.unescape(text)
    blocks = (" ".join(chunk.split()) for chunk in _BLANK_LINE.split(text))
    return [block for block in blocks if block]


# =========================================================================
# LCS alignment
# =========================================================================


def _common_ends(a: Sequence[str], b: Sequence[str]) -> tuple[int, int]:
    """Lengths of the common prefix and of the common suffix after it."""
    len_a, len_b = len(a), len(b)
    prefix = 0
    while prefix < len_a and prefix < len_b and a[prefix] == b[prefix]:
        prefix += 1
    suffix = 0
    while (
        suffix < len_a - prefix
        and suffix < len_b - prefix
        and a[len_a - 1 - suffix] == b[len_b - 1 - suffix]
    ):
        suffix += 1
    return prefix, suffix


def alignment_cells(a: Sequence[str], b: Sequence[str]) -> int:
    """LCS table entries needed to align ``a`` with ``b``."""
    prefix, suffix = _common_ends(a, b)
    return (len(a) - prefix - suffix) * (len(b) - prefix - suffix)


def lcs_alignment(
    a: Sequence[str],
    b: Sequence[str],
    max_cells: int = DEFAULT_MAX_ALIGNMENT_CELLS,
) -> list[tuple[WordOp, int | None, int | None]]:
    """Align two sequences element by element.

    Returns ``(op, index_in_a, index_in_b)`` triples in document order.
    Common prefix and suffix are matched directly; only the middle pays
    for the quadratic table.  A middle larger than ``max_cells`` is
    reported as deleted then inserted, unaligned.
    """
    len_a, len_b = len(a), len(b)
    prefix, suffix = _common_ends(a, b)

    mid_a = a[prefix:len_a - suffix]
    mid_b = b[prefix:len_b - suffix]
    n, m = len(mid_a), len(mid_b)

    ops: list[tuple[WordOp, int | None, int | None]] = [
        (WordOp.EQUAL, k, k) for k in range(prefix)
    ]
    if n * m > max_cells:
        ops.extend((WordOp.DELETE, prefix + i, None) for i in range(n))
        ops.extend((WordOp.INSERT, None, prefix + j) for j in range(m))
        ops.extend(
            (WordOp.EQUAL, len_a - suffix + k, len_b - suffix + k) for k in range(suffix)
        )
        return ops

    # table[i][j] = LCS length of mid_a[i:] and mid_b[j:]
    table = [[0] * (m + 1) for _ in range(n + 1)]
    for i in range(n - 1, -1, -1):
        row, below = table[i], table[i + 1]
        for j in range(m - 1, -1, -1):
            if mid_a[i] == mid_b[j]:
                row[j] = below[j + 1] + 1
            else:
                row[j] = max(below[j], row[j + 1])

    i = j = 0
    while i < n and j < m:
        if mid_a[i] == mid_b[j]:
            ops.append((WordOp.EQUAL, prefix + i, prefix + j))
            i += 1
            j += 1
        elif table[i + 1][j] >= table[i][j + 1]:
            ops.append((WordOp.DELETE, prefix + i, None))
            i += 1
        else:
            ops.append((WordOp.INSERT, None, prefix + j))
            j += 1
    while i < n:
        ops.append((WordOp.DELETE, prefix + i, None))
        i += 1
    while j < m:
        ops.append((WordOp.INSERT, None, prefix + j))
        j += 1
    ops.extend(
        (WordOp.EQUAL, len_a - suffix + k, len_b - suffix + k) for k in range(suffix)
    )
    return ops


def lcs_length(
    a: Sequence[str], b: Sequence[str], max_cells: int = DEFAULT_MAX_ALIGNMENT_CELLS,
) -> int:
    return sum(1 for op, _, _ in lcs_alignment(a, b, max_cells) if op == WordOp.EQUAL)


def word_similarity(
    before: str, after: str, max_cells: int = DEFAULT_MAX_ALIGNMENT_CELLS,
) -> float:
    """Dice coefficient of the word-level LCS, in ``[0, 1]``."""
    words_before, words_after = before.split(), after.split()
    total = len(words_before) + len(words_after)
    if total == 0:
        return 1.0
    return 2.0 * lcs_length(words_before, words_after, max_cells) / total


def word_diff(
    before: str, after: str, max_cells: int = DEFAULT_MAX_ALIGNMENT_CELLS,
) -> tuple[WordSpan, ...]:
    """Word-level diff with consecutive same-op words merged into spans."""
    words_before, words_after = before.split(), after.split()
    spans: list[tuple[WordOp, list[str]]] = []
    for op, i, j in lcs_alignment(words_before, words_after, max_cells):
        word = words_after[j] if op == WordOp.INSERT else words_before[i]
        if spans and spans[-1][0] == op:
            spans[-1][1].append(word)
        else:
            spans.append((op, [word]))
    return tuple(WordSpan(op, " ".join(words)) for op, words in spans)


# =========================================================================
# Changelog
# =========================================================================


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def summarize(stats: DiffStats) -> str:
    parts = []
    if stats.blocks_added:
        parts.append(f"{_plural(stats.blocks_added, 'clause')} added")
    if stats.blocks_modified:
        parts.append(f"{_plural(stats.blocks_modified, 'clause')} modified")
    if stats.blocks_removed:
        parts.append(f"{_plural(stats.blocks_removed, 'clause')} removed")
    if not parts:
        return NO_CHANGES_SUMMARY
    return "Content updated: " + ", ".join(parts)


def diff_snapshots(
    old_snapshot: str,
    new_snapshot: str,
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    max_cells: int = DEFAULT_MAX_ALIGNMENT_CELLS,
) -> ChangeLog:
    """Compute the changelog that takes ``old_snapshot`` to ``new_snapshot``.

    Within each unmatched run, deleted and inserted blocks are paired
    positionally; a pair whose word similarity reaches
    ``similarity_threshold`` is reported as one MODIFIED entry, otherwise
    as a REMOVED entry followed by an ADDED entry.
    Alignments larger than ``max_cells`` fall back to delete-then-insert
    runs; a coarse clause alignment adds ``ALIGNMENT_LIMIT_NOTE``.
    """
    old_blocks = split_blocks(old_snapshot)
    new_blocks = split_blocks(new_snapshot)

    entries: list[BlockChange] = []
    counts = {"added": 0, "removed": 0, "modified": 0, "unchanged": 0}
    words = {"added": 0, "removed": 0}
    deleted: list[int] = []
    inserted: list[int] = []

    def added(j: int) -> None:
        entries.append(BlockChange(j, ChangeKind.ADDED, after=new_blocks[j]))
        counts["added"] += 1
        words["added"] += len(new_blocks[j].split())

    def removed(i: int) -> None:
        entries.append(BlockChange(i, ChangeKind.REMOVED, before=old_blocks[i]))
        counts["removed"] += 1
        words["removed"] += len(old_blocks[i].split())

    def flush() -> None:
        for i, j in zip(deleted, inserted):
            before, after = old_blocks[i], new_blocks[j]
            if word_similarity(before, after, max_cells) >= similarity_threshold:
                spans = word_diff(before, after, max_cells)
                entries.append(
                    BlockChange(j, ChangeKind.MODIFIED, before, after, spans)
                )
                counts["modified"] += 1
                for span in spans:
                    n_words = len(span.text.split())
                    if span.op == WordOp.INSERT:
                        words["added"] += n_words
                    elif span.op == WordOp.DELETE:
                        words["removed"] += n_words
            else:
                removed(i)
                added(j)
        paired = min(len(deleted), len(inserted))
        for i in deleted[paired:]:
            removed(i)
        for j in inserted[paired:]:
            added(j)
        deleted.clear()
        inserted.clear()

    for op, i, j in lcs_alignment(old_blocks, new_blocks, max_cells):
        if op == WordOp.EQUAL:
            flush()
            counts["unchanged"] += 1
        elif op == WordOp.DELETE:
            deleted.append(i)
        else:
            inserted.append(j)
    flush()

    stats = DiffStats(
        blocks_added=counts["added"],
        blocks_removed=counts["removed"],
        blocks_modified=counts["modified"],
        blocks_unchanged=counts["unchanged"],
        words_added=words["added"],
        words_removed=words["removed"],
    )
    change_log = ChangeLog(summary=summarize(stats), entries=tuple(entries), stats=stats)
    if alignment_cells(old_blocks, new_blocks) > max_cells:
        change_log = change_log.with_note(ALIGNMENT_LIMIT_NOTE)
    return change_log


def render_html_diff(
    old_snapshot: str,
    new_snapshot: str,
    max_cells: int = DEFAULT_MAX_ALIGNMENT_CELLS,
) -> str:
    """Word-level HTML rendering for side-by-side version comparison."""
    old_text = " ".join(split_blocks(old_snapshot))
    new_text = " ".join(split_blocks(new_snapshot))
    css = {
        WordOp.EQUAL: None,
        WordOp.INSERT: "diff-added",
        WordOp.DELETE: "diff-removed",
    }
    parts = []
    for span in word_diff(old_text, new_text, max_cells):
        text = html.escape(span.text)
        cls = css[span.op]
        parts.append(f'<span class="{cls}">{text}</span>' if cls else f"<span>{text}</span>")
    return '<div class="diff-content">' + " ".join(parts) + "</div>"
