"""
Usage ledger persistence.

Records every run and every request against an AI vendor together with its
token usage, retries and outcome. Request records are opened when a request
starts and closed exactly once; updates to a closed record are ignored.
"""

import logging
import sqlite3
import uuid
from datetime import datetime
from typing import List, Optional

from ..core.errors import LedgerError
from ..core.models import RunMetadata
from ..core.usage import UsageMetadata
from .db import DEFAULT_DB_PATH, get_connection
from .models import (
    RequestRecord,
    RequestStatus,
    RequestType,
    RunRecord,
    RunUsageSummary,
)

logger = logging.getLogger(__name__)

_REQUEST_COLUMNS = """
    id, run_id, request_type, status, total_tokens, cached_tokens,
    prompt_tokens, response_tokens, retries, code_smell_reference,
    start_time, end_time
"""


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the ledger tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS application_run (
                id TEXT PRIMARY KEY,
                branch TEXT NOT NULL,
                model TEXT NOT NULL,
                start_time TEXT NOT NULL,
                end_time TEXT
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS request (
                id TEXT PRIMARY KEY,
                run_id TEXT NOT NULL REFERENCES application_run(id),
                request_type TEXT NOT NULL,
                status TEXT NOT NULL,
                total_tokens INTEGER NOT NULL DEFAULT 0,
                cached_tokens INTEGER NOT NULL DEFAULT 0,
                prompt_tokens INTEGER NOT NULL DEFAULT 0,
                response_tokens INTEGER NOT NULL DEFAULT 0,
                retries INTEGER NOT NULL DEFAULT 0,
                code_smell_reference TEXT,
                start_time TEXT NOT NULL,
                end_time TEXT
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_request_run ON request(run_id)")
        conn.commit()
    finally:
        conn.close()


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_request(row) -> RequestRecord:
    return RequestRecord(
        id=row[0],
        run_id=row[1],
        request_type=RequestType(row[2]),
        status=RequestStatus(row[3]),
        total_tokens=row[4],
        cached_tokens=row[5],
        prompt_tokens=row[6],
        response_tokens=row[7],
        retries=row[8],
        code_smell_reference=row[9],
        start_time=datetime.fromisoformat(row[10]),
        end_time=_parse_time(row[11]),
    )


def _row_to_run(row) -> RunRecord:
    return RunRecord(
        id=row[0],
        branch=row[1],
        model=row[2],
        start_time=datetime.fromisoformat(row[3]),
        end_time=_parse_time(row[4]),
    )


class UsageLedger:
    """Ledger of runs and requests for one run identity.

    The run is identified by the correlation id of the given metadata; branch
    and model are read from the metadata when the run is initialized.
    """

    def __init__(self, db_path: str, metadata: RunMetadata):
        """Initialize the ledger.

        Args:
            db_path: Path to SQLite database file, the schema must exist
            metadata: Identity of the current run
        """
        self.db_path = db_path
        self.metadata = metadata

    @property
    def run_id(self) -> str:
        return self.metadata.correlation_id

    def initialize_run(self) -> None:
        """Record the start of the current run."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT OR IGNORE INTO application_run (id, branch, model, start_time)
                VALUES (?, ?, ?, ?)
            """, (
                self.run_id,
                self.metadata.branch_name,
                self.metadata.model_name,
                datetime.now().isoformat(),
            ))
            conn.commit()
        finally:
            conn.close()
        logger.debug("Initialized run %s", self.run_id)

    def end_run(self) -> None:
        """Record the end of the current run.

        Requests of the run that are still open are closed as failed.
        """
        now = datetime.now().isoformat()
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                UPDATE request SET status = ?, end_time = ?
                WHERE run_id = ? AND status = ?
            """, (RequestStatus.FAILED.value, now, self.run_id, RequestStatus.OPEN.value))
            if cursor.rowcount:
                logger.warning("Closed %d open request(s) of run %s as failed", cursor.rowcount, self.run_id)
            conn.execute("""
                UPDATE application_run SET end_time = ?
                WHERE id = ? AND end_time IS NULL
            """, (now, self.run_id))
            conn.commit()
        finally:
            conn.close()

    def initialize_request(
        self,
        request_type: RequestType,
        code_smell_reference: Optional[str] = None
    ) -> str:
        """Open a request record for the current run.

        Args:
            request_type: Kind of request against the AI vendor
            code_smell_reference: Rule the request tries to fix, if any

        Returns:
            Id of the new request record

        Raises:
            LedgerError: If the current run was not initialized
        """
        request_id = str(uuid.uuid4())
        conn = get_connection(self.db_path)
        try:
            conn.execute(f"""
                INSERT INTO request ({_REQUEST_COLUMNS})
                VALUES (?, ?, ?, ?, 0, 0, 0, 0, 0, ?, ?, NULL)
            """, (
                request_id,
                self.run_id,
                request_type.value,
                RequestStatus.OPEN.value,
                code_smell_reference,
                datetime.now().isoformat(),
            ))
            conn.commit()
        except sqlite3.IntegrityError as exc:
            raise LedgerError(f"Run {self.run_id} is not initialized") from exc
        finally:
            conn.close()
        return request_id

    def increment_retries(self, request_id: str, usage: UsageMetadata) -> None:
        """Count a retry and add the usage of the failed attempt.

        Raises:
            LedgerError: If the request does not exist
        """
        self._update_open_request(
            request_id,
            "retries = retries + 1",
            (),
            usage,
        )

    def end_request(self, request_id: str, status: RequestStatus, usage: UsageMetadata) -> None:
        """Close a request record with its final status and remaining usage.

        Closing an already closed record has no effect.

        Raises:
            LedgerError: If the request does not exist
        """
        if status is RequestStatus.OPEN:
            raise ValueError("A request cannot be closed with status Open")
        self._update_open_request(
            request_id,
            "status = ?, end_time = ?",
            (status.value, datetime.now().isoformat()),
            usage,
        )

    def _update_open_request(self, request_id: str, assignments: str, params: tuple, usage: UsageMetadata) -> None:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(f"""
                UPDATE request SET
                    {assignments},
                    total_tokens = total_tokens + ?,
                    cached_tokens = cached_tokens + ?,
                    prompt_tokens = prompt_tokens + ?,
                    response_tokens = response_tokens + ?
                WHERE id = ? AND status = ?
            """, params + (
                usage.actual_used_tokens,
                usage.cached_tokens,
                usage.actual_request_tokens,
                usage.actual_response_tokens,
                request_id,
                RequestStatus.OPEN.value,
            ))
            if cursor.rowcount == 0:
                exists = conn.execute("SELECT 1 FROM request WHERE id = ?", (request_id,)).fetchone()
                if exists is None:
                    raise LedgerError(f"Request {request_id} does not exist")
                logger.debug("Request %s is already closed, ignoring update", request_id)
            conn.commit()
        finally:
            conn.close()

    def get_request(self, request_id: str) -> RequestRecord:
        """Get a request record by id.

        Raises:
            LedgerError: If the request does not exist
        """
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_REQUEST_COLUMNS} FROM request WHERE id = ?", (request_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise LedgerError(f"Request {request_id} does not exist")
        return _row_to_request(row)

    def get_run(self, run_id: Optional[str] = None) -> RunRecord:
        """Get a run record, the current run by default.

        Raises:
            LedgerError: If the run does not exist
        """
        run_id = run_id or self.run_id
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, branch, model, start_time, end_time FROM application_run WHERE id = ?",
                (run_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise LedgerError(f"Run {run_id} does not exist")
        return _row_to_run(row)

    def list_requests(self, run_id: Optional[str] = None) -> List[RequestRecord]:
        """List the requests of a run in the order they were started."""
        run_id = run_id or self.run_id
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {_REQUEST_COLUMNS} FROM request WHERE run_id = ? ORDER BY start_time, rowid",
                (run_id,)
            )
            return [_row_to_request(row) for row in cursor.fetchall()]
        finally:
            conn.close()


def list_run_summaries(limit: int = 20, db_path: str = DEFAULT_DB_PATH) -> List[RunUsageSummary]:
    """Summarize the most recent runs.

    Args:
        limit: Maximum number of runs to return
        db_path: Path to SQLite database file

    Returns:
        Run summaries ordered by start time (newest first)
    """
    conn = get_connection(db_path)
    try:
        cursor = conn.execute("""
            SELECT r.id, r.branch, r.model, r.start_time, r.end_time,
                   COUNT(q.id),
                   SUM(CASE WHEN q.status = ? THEN 1 ELSE 0 END),
                   SUM(q.retries),
                   SUM(q.total_tokens),
                   SUM(q.cached_tokens)
            FROM application_run r
            LEFT JOIN request q ON q.run_id = r.id
            GROUP BY r.id
            ORDER BY r.start_time DESC
            LIMIT ?
        """, (RequestStatus.FAILED.value, limit))
        summaries = []
        for row in cursor.fetchall():
            summaries.append(RunUsageSummary(
                run=_row_to_run(row[:5]),
                requests=row[5] or 0,
                failed_requests=row[6] or 0,
                retries=row[7] or 0,
                total_tokens=row[8] or 0,
                cached_tokens=row[9] or 0,
            ))
        return summaries
    finally:
        conn.close()
