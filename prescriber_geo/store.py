### Indexed store of per-record results, keyed by (NPI, year, address). Lets an interrupted escalation pick up where it stopped.

import sqlite3
import threading
from pathlib import Path
from typing import Iterable, Iterator, Self
import polars as pl

from prescriber_geo.records import RecordKey, ResolutionResult, ResolutionTier

SCHEMA = """
CREATE TABLE IF NOT EXISTS results (
    npi TEXT NOT NULL,
    year INTEGER NOT NULL,
    address TEXT NOT NULL,
    state TEXT NOT NULL,
    fips TEXT,
    tier TEXT NOT NULL,
    source TEXT,
    state_mismatch INTEGER NOT NULL,
    attempted TEXT NOT NULL,
    exhausted INTEGER NOT NULL,
    PRIMARY KEY (npi, year, address)
)
"""

COLUMNS = ("npi", "year", "address", "state", "fips", "tier", "source", "state_mismatch", "attempted", "exhausted")


def _to_row(result: ResolutionResult) -> tuple:
    return (
        result.key.npi,
        result.key.year,
        result.key.address,
        result.state,
        result.fips,
        str(result.tier),
        result.source,
        int(result.state_mismatch),
        ",".join(result.attempted),
        int(result.exhausted),
    )


def _from_row(row: tuple) -> ResolutionResult:
    npi, year, address, state, fips, tier, source, mismatch, attempted, exhausted = row
    return ResolutionResult(
        key=RecordKey(npi, int(year), address),
        state=state,
        fips=fips,
        tier=ResolutionTier(tier),
        source=source,
        state_mismatch=bool(mismatch),
        attempted=tuple(a for a in attempted.split(",") if a),
        exhausted=bool(exhausted),
    )


class ResultStore:
    """
    sqlite-backed map of RecordKey → ResolutionResult.

    Parameters
    ----------
    path : Path or None, database file. None keeps everything in memory.
    """

    def __init__(self: Self, path: Path | None = None) -> None:
        if path is not None:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self.path = path
        self._conn = sqlite3.connect(":memory:" if path is None else str(path), check_same_thread=False)
        self._lock = threading.Lock()
        with self._lock, self._conn:
            self._conn.execute(SCHEMA)

    def get(self: Self, key: RecordKey) -> ResolutionResult | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {', '.join(COLUMNS)} FROM results WHERE npi = ? AND year = ? AND address = ?",
                tuple(key),
            ).fetchone()
        return None if row is None else _from_row(row)

    def put(self: Self, result: ResolutionResult) -> None:
        self.put_many([result])

    def put_many(self: Self, results: Iterable[ResolutionResult]) -> None:
        rows = [_to_row(r) for r in results]
        if not rows:
            return
        with self._lock, self._conn:
            self._conn.executemany(
                f"INSERT OR REPLACE INTO results ({', '.join(COLUMNS)}) VALUES ({', '.join('?' * len(COLUMNS))})",
                rows,
            )

    def __iter__(self: Self) -> Iterator[ResolutionResult]:
        with self._lock:
            rows = self._conn.execute(f"SELECT {', '.join(COLUMNS)} FROM results").fetchall()
        return (_from_row(row) for row in rows)

    def __len__(self: Self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM results").fetchone()[0]

    def to_frame(self: Self) -> pl.DataFrame:
        return results_to_frame(list(self))

    def close(self: Self) -> None:
        self._conn.close()


def results_to_frame(results: Iterable[ResolutionResult]) -> pl.DataFrame:
    """
    Returns
    -------
    polars.DataFrame, Schema = {NPI, year, address, state, fips, tier, source, state_mismatch}
    """
    results = list(results)
    return pl.DataFrame(
        {
            "NPI": [r.key.npi for r in results],
            "year": [r.key.year for r in results],
            "address": [r.key.address for r in results],
            "state": [r.state for r in results],
            "fips": [r.fips for r in results],
            "tier": [str(r.tier) for r in results],
            "source": [r.source for r in results],
            "state_mismatch": [r.state_mismatch for r in results],
        },
        schema={
            "NPI": pl.Utf8,
            "year": pl.Int64,
            "address": pl.Utf8,
            "state": pl.Utf8,
            "fips": pl.Utf8,
            "tier": pl.Utf8,
            "source": pl.Utf8,
            "state_mismatch": pl.Boolean,
        },
    )
