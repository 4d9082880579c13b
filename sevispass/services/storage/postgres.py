"""
Postgres storage backends.
Application / Holder records and one-time login tokens stored in PostgreSQL.
"""
import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extras import RealDictCursor

from sevispass.config import DATABASE_TIMEOUT, DATABASE_URL
from sevispass.services.identity.errors import (
    DuplicateRecordError,
    ExternalServiceError,
    IdentifierTakenError,
    ServiceTimeoutError,
)
from sevispass.services.identity.models import (
    Application,
    ApplicationStatus,
    CredentialType,
    Holder,
    HolderStatus,
    LoginGrant,
)
from sevispass.services.storage.base import RecordStore, TokenStore

logger = logging.getLogger(__name__)

SERVICE = "postgres"

SCHEMA = """
CREATE TABLE IF NOT EXISTS sevispass_applications (
    application_id  TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    credential_type TEXT NOT NULL,
    status          TEXT NOT NULL,
    submitted_at    TIMESTAMPTZ NOT NULL,
    record          JSONB NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_sevispass_applications_user
    ON sevispass_applications (user_id, credential_type, submitted_at DESC);
CREATE INDEX IF NOT EXISTS ix_sevispass_applications_status
    ON sevispass_applications (status);
CREATE UNIQUE INDEX IF NOT EXISTS ux_sevispass_applications_open
    ON sevispass_applications (user_id, credential_type) WHERE status <> 'rejected';

CREATE TABLE IF NOT EXISTS sevispass_holders (
    issued_id       TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    credential_type TEXT NOT NULL,
    status          TEXT NOT NULL,
    application_id  TEXT,
    record          JSONB NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS ux_sevispass_holders_active
    ON sevispass_holders (user_id, credential_type) WHERE status = 'active';

CREATE TABLE IF NOT EXISTS sevispass_login_tokens (
    token_key   TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    claimed_id  TEXT NOT NULL,
    expires_at  TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_sevispass_login_tokens_expiry
    ON sevispass_login_tokens (expires_at);
"""


class PostgresBackend:
    """Connection handling shared by the Postgres stores."""

    def __init__(self, db_url: Optional[str] = None, timeout: Optional[int] = None):
        self.db_url = db_url or DATABASE_URL
        self.timeout = timeout or DATABASE_TIMEOUT
        if not self.db_url:
            raise ValueError("DATABASE_URL is not set")

    def _get_connection(self):
        """Get database connection."""
        try:
            return psycopg2.connect(
                self.db_url,
                connect_timeout=self.timeout,
                options=f"-c statement_timeout={self.timeout * 1000}",
            )
        except psycopg2.OperationalError as e:
            logger.error(f"Failed to connect to database: {str(e)}")
            raise ExternalServiceError(SERVICE, "connect", str(e)) from e

    @contextmanager
    def cursor(self, operation: str):
        """Cursor inside one transaction; commits on success."""
        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur
            conn.commit()
        except pg_errors.QueryCanceled as e:
            conn.rollback()
            logger.error(f"Database {operation} timed out")
            raise ServiceTimeoutError(SERVICE, operation) from e
        except pg_errors.UniqueViolation:
            conn.rollback()
            raise
        except psycopg2.Error as e:
            conn.rollback()
            logger.error(f"Database {operation} failed: {str(e)}")
            raise ExternalServiceError(SERVICE, operation, str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self.cursor("ensure_schema") as cur:
            cur.execute(SCHEMA)
        logger.info("Database schema ready")


def _record(value: Dict[str, Any]) -> str:
    return json.dumps(value)


class PostgresRecordStore(PostgresBackend, RecordStore):

    def put_application(self, application: Application, expected_status: Optional[ApplicationStatus] = None) -> bool:
        data = application.to_dict()
        params = (
            application.application_id,
            application.user_id,
            application.credential_type.value,
            application.status.value,
            application.submitted_at,
            _record(data),
        )
        try:
            with self.cursor("put_application") as cur:
                if expected_status is None:
                    cur.execute(
                        """
                        INSERT INTO sevispass_applications
                            (application_id, user_id, credential_type, status, submitted_at, record)
                        VALUES (%s, %s, %s, %s, %s, %s::jsonb)
                        ON CONFLICT (application_id) DO NOTHING
                        """,
                        params,
                    )
                else:
                    cur.execute(
                        """
                        UPDATE sevispass_applications
                        SET user_id = %s, credential_type = %s, status = %s,
                            submitted_at = %s, record = %s::jsonb
                        WHERE application_id = %s AND status = %s
                        """,
                        params[1:] + (application.application_id, expected_status.value),
                    )
                written = cur.rowcount == 1
        except pg_errors.UniqueViolation:
            # ux_sevispass_applications_open: another open application exists
            logger.info(f"User {application.user_id} already has an open {application.credential_type.value} application")
            return False
        return written

    def update_application(
        self,
        application_id: str,
        expected_status: ApplicationStatus,
        changes: Dict[str, Any],
    ) -> Optional[Application]:
        current = self.get_application(application_id)
        if current is None:
            return None
        # Serialize the changed fields the same way to_dict does
        merged = Application.from_dict({**current.to_dict(), **changes}).to_dict()
        patch = {k: merged[k] for k in changes}
        new_status = merged["status"]

        with self.cursor("update_application") as cur:
            cur.execute(
                """
                UPDATE sevispass_applications
                SET status = %s, record = record || %s::jsonb
                WHERE application_id = %s AND status = %s
                RETURNING record
                """,
                (new_status, _record(patch), application_id, expected_status.value),
            )
            row = cur.fetchone()
        if not row:
            return None
        return Application.from_dict(row["record"])

    def get_application(self, application_id: str) -> Optional[Application]:
        with self.cursor("get_application") as cur:
            cur.execute(
                "SELECT record FROM sevispass_applications WHERE application_id = %s",
                (application_id,),
            )
            row = cur.fetchone()
        return Application.from_dict(row["record"]) if row else None

    def latest_application(self, user_id: str, credential_type: CredentialType) -> Optional[Application]:
        with self.cursor("latest_application") as cur:
            cur.execute(
                """
                SELECT record FROM sevispass_applications
                WHERE user_id = %s AND credential_type = %s
                ORDER BY submitted_at DESC
                LIMIT 1
                """,
                (user_id, credential_type.value),
            )
            row = cur.fetchone()
        return Application.from_dict(row["record"]) if row else None

    def list_applications(
        self,
        statuses: Optional[Iterable[ApplicationStatus]] = None,
        credential_type: Optional[CredentialType] = None,
    ) -> List[Application]:
        clauses, params = [], []
        if statuses:
            clauses.append("status = ANY(%s)")
            params.append([s.value for s in statuses])
        if credential_type is not None:
            clauses.append("credential_type = %s")
            params.append(credential_type.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.cursor("list_applications") as cur:
            cur.execute(
                f"SELECT record FROM sevispass_applications {where} ORDER BY submitted_at ASC",
                tuple(params),
            )
            rows = cur.fetchall()
        return [Application.from_dict(r["record"]) for r in rows]

    def create_holder(self, holder: Holder) -> Holder:
        data = holder.to_dict()
        data.pop("effective_status", None)
        try:
            with self.cursor("create_holder") as cur:
                cur.execute(
                    """
                    INSERT INTO sevispass_holders
                        (issued_id, user_id, credential_type, status, application_id, record)
                    VALUES (%s, %s, %s, %s, %s, %s::jsonb)
                    ON CONFLICT (issued_id) DO NOTHING
                    RETURNING record
                    """,
                    (
                        holder.issued_id,
                        holder.user_id,
                        holder.credential_type.value,
                        holder.status.value,
                        holder.application_id,
                        _record(data),
                    ),
                )
                row = cur.fetchone()
        except pg_errors.UniqueViolation as e:
            raise DuplicateRecordError(
                f"User {holder.user_id} already holds an active {holder.credential_type.value}"
            ) from e

        if row:
            return Holder.from_dict(row["record"])

        existing = self.get_holder(holder.issued_id)
        if existing is not None and existing.application_id == holder.application_id:
            return existing
        raise IdentifierTakenError(holder.issued_id)

    def get_holder(self, issued_id: str) -> Optional[Holder]:
        with self.cursor("get_holder") as cur:
            cur.execute("SELECT record FROM sevispass_holders WHERE issued_id = %s", (issued_id,))
            row = cur.fetchone()
        return Holder.from_dict(row["record"]) if row else None

    def find_active_holder(self, user_id: str, credential_type: CredentialType) -> Optional[Holder]:
        with self.cursor("find_active_holder") as cur:
            cur.execute(
                """
                SELECT record FROM sevispass_holders
                WHERE user_id = %s AND credential_type = %s AND status = 'active'
                """,
                (user_id, credential_type.value),
            )
            row = cur.fetchone()
        return Holder.from_dict(row["record"]) if row else None

    def update_holder_status(self, issued_id: str, status: HolderStatus) -> Optional[Holder]:
        try:
            with self.cursor("update_holder_status") as cur:
                cur.execute(
                    """
                    UPDATE sevispass_holders
                    SET status = %s, record = record || %s::jsonb
                    WHERE issued_id = %s
                    RETURNING record
                    """,
                    (status.value, _record({"status": status.value}), issued_id),
                )
                row = cur.fetchone()
        except pg_errors.UniqueViolation as e:
            raise DuplicateRecordError(f"Another active credential exists for holder {issued_id}") from e
        return Holder.from_dict(row["record"]) if row else None


class PostgresTokenStore(PostgresBackend, TokenStore):

    def put(self, key: str, grant: LoginGrant) -> None:
        with self.cursor("put_token") as cur:
            cur.execute(
                """
                INSERT INTO sevispass_login_tokens (token_key, user_id, claimed_id, expires_at)
                VALUES (%s, %s, %s, %s)
                """,
                (key, grant.user_id, grant.claimed_id, grant.expires_at),
            )

    def take(self, key: str) -> Optional[LoginGrant]:
        # DELETE ... RETURNING is the atomic single-use step
        with self.cursor("take_token") as cur:
            cur.execute(
                """
                DELETE FROM sevispass_login_tokens
                WHERE token_key = %s
                RETURNING user_id, claimed_id, expires_at
                """,
                (key,),
            )
            row = cur.fetchone()
        if not row:
            return None
        return LoginGrant(
            token=key,
            user_id=row["user_id"],
            claimed_id=row["claimed_id"],
            expires_at=row["expires_at"],
        )

    def purge_expired(self, now: datetime) -> int:
        with self.cursor("purge_tokens") as cur:
            cur.execute("DELETE FROM sevispass_login_tokens WHERE expires_at <= %s", (now,))
            return cur.rowcount
