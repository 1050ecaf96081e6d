"""Thread-safe DataFrame journal of acquisition outcomes.

OutcomeStore is registered as an AcquisitionWorker listener and backs the
/outcomes endpoints of the status API.
"""

import logging
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Optional

import pandas as pd

from data_store.schemas import SCHEMA, outcome_to_row
from timed_rx_lib.models import AcquisitionOutcome, OutcomeStatus

logger = logging.getLogger(__name__)


class OutcomeStore:
    """Thread-safe in-memory DataFrame of processed requests.

    Appends come from the worker thread, reads from the API threads.
    """

    def __init__(self, max_rows: int = 10000) -> None:
        """Initialize empty store.

        Args:
            max_rows: Maximum rows to keep in memory. Older rows are trimmed after appends.
        """
        self._lock = RLock()
        self._df = pd.DataFrame(columns=list(SCHEMA.keys()))
        self._max_rows = max_rows

    def append(self, outcome: AcquisitionOutcome) -> None:
        """Append one outcome.

        Thread-safe. Trims to max_rows, keeping the most recent.
        """
        row = outcome_to_row(outcome)

        with self._lock:
            new_df = pd.DataFrame([row], columns=list(SCHEMA.keys()))
            if self._df.empty:
                self._df = new_df
            else:
                self._df = pd.concat([self._df, new_df], ignore_index=True)

            if len(self._df) > self._max_rows:
                excess = len(self._df) - self._max_rows
                self._df = self._df.iloc[excess:].reset_index(drop=True)
                logger.debug(f"Trimmed {excess} oldest rows, now {len(self._df)} rows")

    def get_dataframe(self) -> pd.DataFrame:
        """Get copy of entire DataFrame.

        Returns:
            Copy of internal DataFrame
        """
        with self._lock:
            return self._df.copy()

    def get_recent(self, limit: int = 50) -> pd.DataFrame:
        """Get the last limit outcomes, oldest first.

        Args:
            limit: Maximum number of rows to return

        Returns:
            DataFrame with at most limit rows
        """
        with self._lock:
            if limit <= 0 or self._df.empty:
                return pd.DataFrame(columns=list(SCHEMA.keys()))
            return self._df.tail(limit).reset_index(drop=True)

    def get_stats(self) -> dict:
        """Get summary statistics about processed requests.

        Returns:
            Dictionary with keys:
                - row_count: Number of stored outcomes
                - by_status: Count per OutcomeStatus value (all statuses present)
                - success_rate: Fraction of SUCCESS outcomes (0 when empty)
                - first_completed_at / last_completed_at: ISO timestamps (or None)
                - total_samples: Sum of samples received
        """
        with self._lock:
            by_status = {status.value: 0 for status in OutcomeStatus}

            if self._df.empty:
                return {
                    "row_count": 0,
                    "by_status": by_status,
                    "success_rate": 0.0,
                    "first_completed_at": None,
                    "last_completed_at": None,
                    "total_samples": 0,
                }

            for status, count in self._df["status"].value_counts().items():
                by_status[status] = int(count)

            row_count = len(self._df)
            return {
                "row_count": row_count,
                "by_status": by_status,
                "success_rate": by_status[OutcomeStatus.SUCCESS.value] / row_count,
                "first_completed_at": self._df["completed_at"].iloc[0],
                "last_completed_at": self._df["completed_at"].iloc[-1],
                "total_samples": int(self._df["samples_received"].sum()),
            }

    def export_csv(self, path: Optional[str] = None) -> str:
        """Export DataFrame to CSV file.

        Args:
            path: Output file path. If None, generates timestamped filename.

        Returns:
            Absolute path to exported file
        """
        with self._lock:
            if path is None:
                timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
                path = f"timed_rx_outcomes_{timestamp}.csv"

            self._df.to_csv(path, index=False)
            abs_path = str(Path(path).resolve())
            logger.info(f"Exported {len(self._df)} outcomes to CSV: {abs_path}")
            return abs_path

    def clear(self) -> None:
        """Clear all stored outcomes."""
        with self._lock:
            self._df = pd.DataFrame(columns=list(SCHEMA.keys()))
            logger.debug("OutcomeStore cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._df)

    @property
    def max_rows(self) -> int:
        return self._max_rows
