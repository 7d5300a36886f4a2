"""
Storage module for persisting market snapshots, price history, and news reports.

This module provides a clean repository interface for SQLite database operations.
It handles table creation, insertion, and retrieval with parameterized queries.
Timestamps are stored as fixed-width UTC ISO strings so that range queries can
compare them as text.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

from newsbot.config import Config
from newsbot.models import HistoryPoint, MarketSnapshot, Report
from newsbot.utils import parse_datetime, to_utc_iso

# Configure module logger
logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the database cannot be initialized."""


class Storage:
    """
    Repository for database operations.

    Provides methods for storing and retrieving market snapshots, their
    append-only price history, and emitted news reports. Handles table
    creation automatically.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file. If None, uses Config.DB_PATH

        Raises:
            StorageError: If the database cannot be created or opened
        """
        self.db_path = Path(db_path or Config.DB_PATH)
        self._initialize_database()

    @contextmanager
    def _get_connection(self):
        """
        Context manager for database connections.

        Ensures proper connection handling and transaction management.
        Each call opens its own connection, so the store can be used from
        several worker threads.
        """
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_database(self) -> None:
        """Create database tables if they don't exist."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            with self._get_connection() as conn:
                cursor = conn.cursor()

                # Latest snapshot per market
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS markets (
                        id TEXT PRIMARY KEY,
                        question TEXT NOT NULL,
                        category TEXT,
                        current_price REAL NOT NULL,
                        previous_price_1h REAL,
                        previous_price_24h REAL,
                        volume_24h REAL DEFAULT 0.0,
                        volume_average REAL DEFAULT 0.0,
                        liquidity REAL DEFAULT 0.0,
                        last_updated TEXT NOT NULL
                    )
                """)

                # Append-only price/volume observations
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS market_history (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        market_id TEXT NOT NULL,
                        price REAL NOT NULL,
                        volume REAL NOT NULL,
                        timestamp TEXT NOT NULL,
                        FOREIGN KEY (market_id) REFERENCES markets(id)
                    )
                """)

                # Emitted news reports
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS news_reports (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        market_id TEXT NOT NULL,
                        headline TEXT NOT NULL,
                        summary TEXT,
                        analysis TEXT,
                        key_takeaways TEXT,
                        reasons TEXT,
                        confidence REAL NOT NULL,
                        price_change REAL NOT NULL,
                        volume_change REAL NOT NULL,
                        event_time TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        FOREIGN KEY (market_id) REFERENCES markets(id)
                    )
                """)

                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_history_market_time
                    ON market_history(market_id, timestamp)
                """)

                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_reports_event_time
                    ON news_reports(event_time)
                """)

                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_reports_market_time
                    ON news_reports(market_id, event_time)
                """)

            logger.info(f"Database initialized at {self.db_path}")

        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to initialize database at {self.db_path}: {e}", exc_info=True)
            raise StorageError(f"Could not initialize database at {self.db_path}: {e}") from e

    # Snapshot operations

    def upsert_snapshot(self, snapshot: MarketSnapshot) -> bool:
        """
        Insert or replace the latest snapshot of a market.

        Args:
            snapshot: MarketSnapshot to save

        Returns:
            True if successful, False otherwise
        """
        try:
            with self._get_connection() as conn:
                self._write_snapshot(conn, snapshot)

            logger.debug(f"Saved snapshot: {snapshot.market_id}")
            return True

        except Exception as e:
            logger.error(f"Error saving snapshot {snapshot.market_id}: {e}", exc_info=True)
            return False

    def append_history(self, point: HistoryPoint) -> bool:
        """
        Append one observation to a market's price history.

        Args:
            point: HistoryPoint to append

        Returns:
            True if successful, False otherwise
        """
        try:
            with self._get_connection() as conn:
                self._write_history(conn, point)

            logger.debug(f"Appended history point for market: {point.market_id}")
            return True

        except Exception as e:
            logger.error(f"Error appending history for {point.market_id}: {e}", exc_info=True)
            return False

    def save_observation(self, snapshot: MarketSnapshot, point: HistoryPoint) -> bool:
        """
        Save a snapshot and its history point in a single transaction.

        Either both rows are written or neither is.

        Args:
            snapshot: MarketSnapshot to upsert
            point: HistoryPoint to append

        Returns:
            True if successful, False otherwise
        """
        try:
            with self._get_connection() as conn:
                self._write_snapshot(conn, snapshot)
                self._write_history(conn, point)

            logger.debug(f"Saved observation for market: {snapshot.market_id}")
            return True

        except Exception as e:
            logger.error(f"Error saving observation for {snapshot.market_id}: {e}", exc_info=True)
            return False

    def _write_snapshot(self, conn: sqlite3.Connection, snapshot: MarketSnapshot) -> None:
        conn.execute("""
            INSERT OR REPLACE INTO markets
            (id, question, category, current_price, previous_price_1h,
             previous_price_24h, volume_24h, volume_average, liquidity, last_updated)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            snapshot.market_id,
            snapshot.question,
            snapshot.category,
            snapshot.current_price,
            snapshot.previous_price_1h,
            snapshot.previous_price_24h,
            snapshot.volume_24h,
            snapshot.volume_average,
            snapshot.liquidity,
            to_utc_iso(snapshot.observed_at)
        ))

    def _write_history(self, conn: sqlite3.Connection, point: HistoryPoint) -> None:
        conn.execute("""
            INSERT INTO market_history (market_id, price, volume, timestamp)
            VALUES (?, ?, ?, ?)
        """, (
            point.market_id,
            point.price,
            point.volume,
            to_utc_iso(point.timestamp)
        ))

    def get_snapshot(self, market_id: str) -> Optional[MarketSnapshot]:
        """
        Retrieve the latest snapshot of a market.

        Args:
            market_id: Market identifier

        Returns:
            MarketSnapshot if found, None otherwise
        """
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT * FROM markets WHERE id = ?", (market_id,)
                ).fetchone()

                if not row:
                    return None

                return self._row_to_snapshot(row)

        except Exception as e:
            logger.error(f"Error retrieving snapshot {market_id}: {e}", exc_info=True)
            return None

    def list_snapshots(self, limit: Optional[int] = None) -> list[MarketSnapshot]:
        """
        Retrieve all snapshots, most active first.

        Args:
            limit: Maximum number of snapshots to return

        Returns:
            List of MarketSnapshot objects ordered by 24h volume descending
        """
        try:
            with self._get_connection() as conn:
                query = "SELECT * FROM markets ORDER BY volume_24h DESC"
                params: tuple = ()
                if limit and isinstance(limit, int) and limit > 0:
                    query += " LIMIT ?"
                    params = (limit,)

                rows = conn.execute(query, params).fetchall()
                return [self._row_to_snapshot(row) for row in rows]

        except Exception as e:
            logger.error(f"Error retrieving snapshots: {e}", exc_info=True)
            return []

    def _row_to_snapshot(self, row: sqlite3.Row) -> MarketSnapshot:
        """Convert database row to MarketSnapshot object."""
        return MarketSnapshot(
            market_id=row["id"],
            question=row["question"],
            category=row["category"] or "",
            current_price=row["current_price"],
            previous_price_1h=row["previous_price_1h"],
            previous_price_24h=row["previous_price_24h"],
            volume_24h=row["volume_24h"] or 0.0,
            volume_average=row["volume_average"] or 0.0,
            liquidity=row["liquidity"] or 0.0,
            observed_at=parse_datetime(row["last_updated"])
        )

    # History operations

    def query_history(self, market_id: str, since: datetime) -> list[HistoryPoint]:
        """
        Retrieve a market's history points recorded at or after ``since``.

        Args:
            market_id: Market identifier
            since: Lower bound of the window (inclusive)

        Returns:
            List of HistoryPoint objects ordered by timestamp ascending
        """
        try:
            with self._get_connection() as conn:
                rows = conn.execute("""
                    SELECT market_id, price, volume, timestamp FROM market_history
                    WHERE market_id = ? AND timestamp >= ?
                    ORDER BY timestamp ASC, id ASC
                """, (market_id, to_utc_iso(since))).fetchall()

                return [
                    HistoryPoint(
                        market_id=row["market_id"],
                        price=row["price"],
                        volume=row["volume"],
                        timestamp=parse_datetime(row["timestamp"])
                    )
                    for row in rows
                ]

        except Exception as e:
            logger.error(f"Error retrieving history for {market_id}: {e}", exc_info=True)
            return []

    # Report operations

    def insert_report(self, report: Report) -> Optional[int]:
        """
        Persist a news report.

        Args:
            report: Report to insert (its id is ignored)

        Returns:
            The new report id, or None if the insert failed
        """
        try:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    INSERT INTO news_reports
                    (market_id, headline, summary, analysis, key_takeaways, reasons,
                     confidence, price_change, volume_change, event_time, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    report.market_id,
                    report.headline,
                    report.summary,
                    report.analysis,
                    report.key_takeaways,
                    json.dumps(report.reasons),
                    report.confidence,
                    report.price_change,
                    report.volume_change,
                    to_utc_iso(report.event_time),
                    to_utc_iso(report.created_at)
                ))
                report_id = cursor.lastrowid

            logger.debug(f"Saved report {report_id} for market: {report.market_id}")
            return report_id

        except Exception as e:
            logger.error(f"Error saving report for {report.market_id}: {e}", exc_info=True)
            return None

    def list_recent_reports(self, market_id: str, since: datetime) -> Optional[list[Report]]:
        """
        Retrieve a market's reports whose event time is at or after ``since``.

        Args:
            market_id: Market identifier
            since: Lower bound of the window (inclusive)

        Returns:
            List of Report objects, newest first, or None if the read failed
        """
        try:
            with self._get_connection() as conn:
                rows = conn.execute("""
                    SELECT * FROM news_reports
                    WHERE market_id = ? AND event_time >= ?
                    ORDER BY event_time DESC, id DESC
                """, (market_id, to_utc_iso(since))).fetchall()

                return self._rows_to_reports(rows)

        except Exception as e:
            logger.error(f"Error retrieving recent reports for {market_id}: {e}", exc_info=True)
            return None

    def list_reports(self, limit: Optional[int] = 50) -> list[Report]:
        """
        Retrieve the most recent reports across all markets.

        Args:
            limit: Maximum number of reports to return

        Returns:
            List of Report objects ordered by event time descending
        """
        try:
            with self._get_connection() as conn:
                query = "SELECT * FROM news_reports ORDER BY event_time DESC, id DESC"
                params: tuple = ()
                if limit and isinstance(limit, int) and limit > 0:
                    query += " LIMIT ?"
                    params = (limit,)

                rows = conn.execute(query, params).fetchall()
                return self._rows_to_reports(rows)

        except Exception as e:
            logger.error(f"Error retrieving reports: {e}", exc_info=True)
            return []

    def _rows_to_reports(self, rows: list[sqlite3.Row]) -> list[Report]:
        reports = []
        for row in rows:
            try:
                reports.append(Report(
                    id=row["id"],
                    market_id=row["market_id"],
                    headline=row["headline"],
                    summary=row["summary"] or "",
                    analysis=row["analysis"] or "",
                    key_takeaways=row["key_takeaways"] or "",
                    reasons=json.loads(row["reasons"] or "[]"),
                    confidence=row["confidence"],
                    price_change=row["price_change"],
                    volume_change=row["volume_change"],
                    event_time=parse_datetime(row["event_time"]),
                    created_at=parse_datetime(row["created_at"])
                ))
            except (ValueError, TypeError) as e:
                logger.warning(f"Error parsing report row {row['id']}: {e}")
                continue
        return reports

    # Maintenance operations

    def purge_all(self) -> bool:
        """
        Delete all reports, history and snapshots.

        Returns:
            True if successful, False otherwise
        """
        return self._delete_tables("news_reports", "market_history", "markets")

    def clear_reports(self) -> bool:
        """Delete all news reports, keeping market data."""
        return self._delete_tables("news_reports")

    def clear_markets(self) -> bool:
        """Delete snapshots and history, keeping reports."""
        return self._delete_tables("market_history", "markets")

    def _delete_tables(self, *tables: str) -> bool:
        try:
            with self._get_connection() as conn:
                for table in tables:
                    conn.execute(f"DELETE FROM {table}")

            logger.info(f"Cleared tables: {', '.join(tables)}")
            return True

        except Exception as e:
            logger.error(f"Error clearing tables {tables}: {e}", exc_info=True)
            return False

    def count_rows(self) -> dict[str, int]:
        """Row counts per table, used by the maintenance CLI."""
        counts = {}
        try:
            with self._get_connection() as conn:
                for table in ("markets", "market_history", "news_reports"):
                    counts[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        except Exception as e:
            logger.error(f"Error counting rows: {e}", exc_info=True)
        return counts
