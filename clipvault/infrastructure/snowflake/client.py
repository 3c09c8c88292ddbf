"""
Snowflake database connection management.

Provides a connection context manager for real Snowflake access and an
in-memory mock connection for local development and tests.

Most code never touches this module directly; it goes through
VideoRepository, which owns the SQL and the row <-> domain translation.
"""

import base64
import json
import logging
from contextlib import contextmanager
from typing import Generator, Optional

from .repositories.videos import VIDEO_COLUMNS, SnowflakeConfig, SnowflakeConnection

logger = logging.getLogger(__name__)


class SnowflakeConnectionError(Exception):
    """Raised when Snowflake connection fails."""
    pass


def _load_private_key(pem_data: bytes) -> bytes:
    """
    Convert a PEM private key into the DER/PKCS8 bytes snowflake-connector
    expects for key-pair authentication.
    """
    from cryptography.hazmat.backends import default_backend
    from cryptography.hazmat.primitives import serialization

    private_key = serialization.load_pem_private_key(
        pem_data,
        password=None,
        backend=default_backend()
    )

    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )


def _read_private_key(config: SnowflakeConfig) -> Optional[bytes]:
    if config.private_key_base64:
        return _load_private_key(base64.b64decode(config.private_key_base64))
    if config.private_key_path:
        with open(config.private_key_path, "rb") as key_file:
            return _load_private_key(key_file.read())
    return None


@contextmanager
def get_snowflake_connection(config: SnowflakeConfig) -> Generator[SnowflakeConnection, None, None]:
    """
    Provide a Snowflake connection with automatic cleanup.

    Key-pair auth is used when a private key (path or base64) is
    configured, password auth otherwise. The connection is always closed,
    even if the body raises.

    Usage:
        with get_snowflake_connection(config) as conn:
            repo = VideoRepository(conn)
    """
    import snowflake.connector

    connect_params = {
        "account": config.account,
        "user": config.user,
        "database": config.database,
        "schema": config.schema,
        "warehouse": config.warehouse,
        "role": config.role,
        "client_session_keep_alive": True,
    }

    private_key = _read_private_key(config)
    if private_key:
        logger.info("Using key-pair authentication for Snowflake")
        connect_params["private_key"] = private_key
    elif config.password:
        connect_params["password"] = config.password
    else:
        raise SnowflakeConnectionError(
            "Either password or a private key must be provided"
        )

    try:
        conn = snowflake.connector.connect(**connect_params)
    except snowflake.connector.errors.DatabaseError as e:
        logger.error(
            "Snowflake connection failed",
            extra={"error": str(e), "account": config.account}
        )
        raise SnowflakeConnectionError(f"Database connection failed: {e}") from e

    logger.debug(
        "Established Snowflake connection",
        extra={
            "account": config.account,
            "database": config.database,
            "schema": config.schema,
        }
    )

    try:
        yield conn
    finally:
        try:
            conn.close()
            logger.debug("Closed Snowflake connection")
        except Exception as e:
            logger.warning(
                "Error closing Snowflake connection",
                extra={"error": str(e)}
            )


# ---------------------------------------------------------------------------
# Mock Connection for Local Development
# ---------------------------------------------------------------------------

def _normalize(query: str) -> str:
    return " ".join(query.upper().split())


class MockSnowflakeCursor:
    """
    Mock Snowflake cursor.

    Implements just enough of the cursor interface to run the statements
    VideoRepository issues, by pattern-matching on the normalized SQL and
    reading parameters in the order the repository passes them.
    """

    def __init__(self, storage: dict) -> None:
        self._storage = storage
        self._results: list = []
        self._rowcount: int = 0

    def execute(self, query: str, params: Optional[tuple] = None) -> "MockSnowflakeCursor":
        sql = _normalize(query)
        params = tuple(params or ())

        self._results = []
        self._rowcount = 0

        if sql.startswith("CREATE TABLE"):
            pass
        elif sql.startswith("MERGE INTO VIDEOS"):
            self._handle_insert(params)
        elif sql.startswith("UPDATE VIDEOS"):
            self._handle_soft_delete(params)
        elif sql.startswith("SELECT COUNT(*) FROM VIDEOS"):
            rows, _ = self._filter_user_rows(sql, params)
            self._results = [(len(rows),)]
        elif sql.startswith("SELECT"):
            self._handle_select(sql, params)
        else:
            logger.debug("Mock cursor ignoring query", extra={"query": sql[:100]})

        return self

    def _handle_insert(self, params: tuple) -> None:
        table = self._storage["videos"]
        video_id = params[0]

        if any(row["video_id"] == video_id for row in table.values()):
            self._rowcount = 0
            return

        (
            _, asset_id, user_id, original_name, mime_type, size, bucket,
            storage_key, cover_key, thumbnail_key, metadata_json,
            duration_seconds, status, upload_time,
        ) = params

        table[asset_id] = {
            "id": asset_id,
            "video_id": video_id,
            "user_id": user_id,
            "original_name": original_name,
            "mime_type": mime_type,
            "size": size,
            "bucket": bucket,
            "storage_key": storage_key,
            "cover_key": cover_key,
            "thumbnail_key": thumbnail_key,
            "metadata": metadata_json,
            "duration_seconds": duration_seconds,
            "status": status,
            "upload_time": upload_time,
            "delete_time": None,
        }
        self._rowcount = 1

    def _handle_soft_delete(self, params: tuple) -> None:
        deleted_at, asset_id = params
        row = self._storage["videos"].get(asset_id)
        if row and row["status"] == "active":
            row["status"] = "deleted"
            row["delete_time"] = deleted_at
            self._rowcount = 1

    def _handle_select(self, sql: str, params: tuple) -> None:
        table = self._storage["videos"]

        if "WHERE ID = %S" in sql:
            row = table.get(params[0])
            if row and row["status"] == "active":
                if len(params) < 2 or row["user_id"] == params[1]:
                    self._results = [self._as_tuple(row)]

        elif "WHERE VIDEO_ID = %S" in sql:
            self._results = [
                self._as_tuple(row) for row in table.values()
                if row["video_id"] == params[0] and row["status"] == "active"
            ]

        elif "WHERE USER_ID = %S" in sql:
            rows, rest = self._filter_user_rows(sql, params)
            limit, offset = rest
            rows.sort(key=lambda r: r["upload_time"], reverse=True)
            self._results = [self._as_tuple(r) for r in rows[offset:offset + limit]]

    def _filter_user_rows(self, sql: str, params: tuple) -> tuple[list[dict], tuple]:
        remaining = list(params)
        user_id = remaining.pop(0)
        title = remaining.pop(0) if "CONTAINS(" in sql else None
        category = remaining.pop(0) if "METADATA:CATEGORY" in sql else None

        rows = []
        for row in self._storage["videos"].values():
            if row["user_id"] != user_id or row["status"] != "active":
                continue
            metadata = json.loads(row["metadata"] or "{}")
            if title and title.lower() not in (metadata.get("title") or "").lower():
                continue
            if category and metadata.get("category") != category:
                continue
            rows.append(row)

        return rows, tuple(remaining)

    @staticmethod
    def _as_tuple(row: dict) -> tuple:
        return tuple(row[column] for column in VIDEO_COLUMNS)

    def fetchone(self):
        if not self._results:
            return None
        return self._results[0]

    def fetchall(self) -> list:
        return list(self._results)

    def close(self) -> None:
        pass

    @property
    def rowcount(self) -> int:
        return self._rowcount


class MockSnowflakeConnection:
    """
    In-memory stand-in for a Snowflake connection.

    Not suitable for production, but enough for local development, unit
    tests and CI without provisioning a warehouse.
    """

    def __init__(self) -> None:
        # {table_name: {id: row_dict}}
        self._storage: dict[str, dict[str, dict]] = {
            "videos": {},
        }
        self.commits = 0
        self.rollbacks = 0

        logger.info("Initialized mock Snowflake connection (in-memory)")

    def cursor(self) -> MockSnowflakeCursor:
        return MockSnowflakeCursor(self._storage)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def close(self) -> None:
        pass

    # Helpers for tests
    def rows(self) -> list[dict]:
        return list(self._storage["videos"].values())

    def _clear(self) -> None:
        for table in self._storage.values():
            table.clear()


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

@contextmanager
def create_snowflake_connection(
    config: Optional[SnowflakeConfig] = None,
    mock_mode: bool = False,
) -> Generator[SnowflakeConnection, None, None]:
    """
    Create Snowflake connection based on configuration.

    Args:
        config: Snowflake configuration (required if not mock_mode)
        mock_mode: If True, yield a fresh in-memory connection

    Yields:
        SnowflakeConnection implementation (real or mock)
    """
    if mock_mode:
        conn = MockSnowflakeConnection()
        try:
            yield conn
        finally:
            conn.close()
        return

    if config is None:
        raise ValueError("config is required when not in mock mode")

    with get_snowflake_connection(config) as conn:
        yield conn
