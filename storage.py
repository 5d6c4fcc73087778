from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterator, List, Protocol

import pandas as pd

from schemas import FinalSummary

EMAIL_CSV_COLUMNS = ["url", "email", "foundOn", "firstSeenAt"]


class OutputSink(Protocol):
    """Append-only, order-preserving record store. No update/delete."""

    def append(self, record: Dict[str, Any]) -> None:
        ...


class MemorySink:
    def __init__(self) -> None:
        self.records: List[Dict[str, Any]] = []

    def append(self, record: Dict[str, Any]) -> None:
        self.records.append(dict(record))


class Dataset:
    """
    JSONL dataset: one pushed record per line, flushed on every append so
    per-email records are persisted as they are discovered.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def clear(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("", encoding="utf-8")

    def append(self, record: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record, ensure_ascii=False, default=str)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
            f.flush()

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        if not self.path.exists():
            return
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                yield json.loads(line)

    def records(self) -> List[Dict[str, Any]]:
        return list(self)


def _atomic_write_bytes(dst: Path, data: bytes) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(delete=False, dir=str(dst.parent), suffix=".tmp") as tf:
        tf.write(data)
        tmp_name = tf.name
    os.replace(tmp_name, dst)


def emails_dataframe(final: FinalSummary) -> pd.DataFrame:
    rows = [
        {
            "url": summary.target_url,
            "email": rec.email,
            "foundOn": rec.source_url,
            "firstSeenAt": rec.first_seen_at.isoformat(),
        }
        for summary in final.results
        for rec in summary.emails
    ]
    return pd.DataFrame(rows, columns=EMAIL_CSV_COLUMNS)


def save_emails_csv(final: FinalSummary, output_path: str | Path) -> Path:
    """Flat per-email CSV (one row per target/email pair)."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    emails_dataframe(final).to_csv(output_path, index=False)
    return output_path


def save_metrics(metrics: dict, output_path: str | Path) -> Path:
    output_path = Path(output_path)
    payload = json.dumps(metrics, indent=2, sort_keys=True).encode("utf-8")
    _atomic_write_bytes(output_path, payload)
    return output_path
