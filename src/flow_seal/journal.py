# journal.py
# Append-only run journal (logs/journal.ndjson) with two integrity strategies.
#
#   PlainJournal   — one canonical JSON event per line
#   ChainedJournal — one ChainedJournalEntry per line, where
#                    hash = SHA256(prev_hash + canonical(data))
#                    and the first prev_hash is the configured seed
#
# A verifier recomputes the chain from the recorded lines and compares the
# final head against the one written into run metadata, which detects
# tampering, reordering and truncation.

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from flow_seal.canonical import canonical_text
from flow_seal.models import ChainedJournalEntry


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _sha256(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def chain_hash(prev_hash: str, data: dict[str, Any]) -> str:
    return _sha256(prev_hash + canonical_text(data, indent=None))


# ---------------------------------------------------------------------------
# HashChain
# ---------------------------------------------------------------------------


class HashChain:
    """Linear SHA-256 chain rooted at a declared seed hash."""

    def __init__(self, seed: str) -> None:
        if len(seed) != 64:
            raise ValueError("Chain seed must be a 64-character hex SHA-256 digest.")
        self._seed = seed
        self._head = seed
        self._length = 0

    def append(self, data: dict[str, Any]) -> ChainedJournalEntry:
        digest = chain_hash(self._head, data)
        entry = ChainedJournalEntry(prev_hash=self._head, data=data, hash=digest)
        self._head = digest
        self._length += 1
        return entry

    @property
    def seed(self) -> str:
        return self._seed

    @property
    def head(self) -> str:
        """Hash of the last appended entry (the seed while empty)."""
        return self._head

    @property
    def length(self) -> int:
        return self._length


@dataclass(frozen=True)
class ChainCheck:
    ok: bool
    head: str
    length: int
    broken_at: int | None = None
    reason: str | None = None


def verify_chain(
    entries: list[ChainedJournalEntry],
    seed: str,
    expected_head: str | None = None,
    expected_length: int | None = None,
) -> ChainCheck:
    """
    Recompute every link. Returns the first broken index on mismatch.
    Callers must treat a failed check as evidence of tampering.
    """
    prev = seed
    for index, entry in enumerate(entries):
        if entry.prev_hash != prev:
            return ChainCheck(False, prev, index, index, "prev_hash does not match the previous entry")
        if chain_hash(prev, entry.data) != entry.hash:
            return ChainCheck(False, prev, index, index, "entry hash does not match its data")
        prev = entry.hash

    if expected_length is not None and expected_length != len(entries):
        return ChainCheck(False, prev, len(entries), len(entries), "entry count differs from the recorded length")
    if expected_head is not None and expected_head != prev:
        return ChainCheck(False, prev, len(entries), len(entries), "final hash differs from the recorded head")
    return ChainCheck(True, prev, len(entries))


# ---------------------------------------------------------------------------
# Journals
# ---------------------------------------------------------------------------


class Journal:
    """Base journal: stamps events and appends one line per event."""

    strategy = "plain"

    def __init__(self, path: Path, run_id: str, now: Callable[[], str]) -> None:
        self._path = path
        self._run_id = run_id
        self._now = now
        self._fh = path.open("a", encoding="utf-8")

    def emit(self, event: str, **fields: Any) -> None:
        if self._fh is None:
            return
        data = {"timestamp_utc": self._now(), "run_id": self._run_id, "event": event}
        data.update(fields)
        # Plain JSON only, so the hashed payload equals what a reader parses back.
        self._fh.write(self._line(json.loads(canonical_text(data, indent=None))) + "\n")
        self._fh.flush()

    def _line(self, data: dict[str, Any]) -> str:
        return canonical_text(data, indent=None)

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    @property
    def closed(self) -> bool:
        return self._fh is None

    def describe(self) -> dict[str, Any]:
        return {"strategy": self.strategy, "path": self._path.name}


class PlainJournal(Journal):
    pass


class ChainedJournal(Journal):
    strategy = "hash_chain"

    def __init__(self, path: Path, run_id: str, now: Callable[[], str], seed: str) -> None:
        self._chain = HashChain(seed)
        super().__init__(path, run_id, now)

    def _line(self, data: dict[str, Any]) -> str:
        return canonical_text(self._chain.append(data), indent=None)

    @property
    def head(self) -> str:
        return self._chain.head

    def describe(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy,
            "path": self._path.name,
            "seed": self._chain.seed,
            "head": self._chain.head,
            "length": self._chain.length,
        }


def open_journal(path: Path, run_id: str, now: Callable[[], str], chained: bool, seed: str) -> Journal:
    if chained:
        return ChainedJournal(path, run_id, now, seed)
    return PlainJournal(path, run_id, now)


def read_chain(path: Path) -> list[ChainedJournalEntry]:
    entries = []
    with path.open("r", encoding="utf-8") as fh:
        for line in fh:
            if line.strip():
                entries.append(ChainedJournalEntry.model_validate_json(line))
    return entries
