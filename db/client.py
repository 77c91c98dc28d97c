from __future__ import annotations

from contextlib import contextmanager
import logging
import os
import subprocess
from typing import Dict, Iterator, Optional, Sequence

from sqlalchemy.engine import URL, Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from .session import _database_url, get_engine

logger = logging.getLogger(__name__)


class DatabaseError(RuntimeError):
    pass


def _pg_dump_bin() -> str:
    return os.getenv("PG_DUMP_BIN", "pg_dump").strip() or "pg_dump"


def _dump_timeout_s() -> int:
    return int(os.getenv("PG_DUMP_TIMEOUT_S", "120"))


def libpq_url(url: str) -> str:
    """SQLAlchemy URLs carry a driver suffix the pg client tools reject.

    The password is left out; `pg_dump_env` hands it over through PGPASSWORD
    so it never shows up in the process list.
    """
    parsed = make_url(url)
    return URL.create(
        "postgresql",
        username=parsed.username,
        host=parsed.host,
        port=parsed.port,
        database=parsed.database,
        query=parsed.query,
    ).render_as_string(hide_password=False)


def pg_dump_env(url: str) -> Dict[str, str]:
    env = dict(os.environ)
    password = make_url(url).password
    if password:
        env["PGPASSWORD"] = str(password)
    return env


def strip_meta_commands(ddl: str) -> str:
    kept = []
    for line in ddl.splitlines():
        stripped = line.strip()
        if stripped.startswith("\\"):
            continue
        if stripped.upper() == "CREATE SCHEMA PUBLIC;":
            continue
        kept.append(line)
    return "\n".join(kept) + "\n"


# A recreated schema has no ACL, so the default USAGE grant is restored by hand.
RESET_PUBLIC_SCHEMA = (
    "DROP SCHEMA public CASCADE; CREATE SCHEMA public; GRANT USAGE ON SCHEMA public TO PUBLIC;"
)

# pg_dump output empties search_path for the whole session.
RESET_SEARCH_PATH = "RESET search_path;"


class Database:
    def __init__(self, engine: Optional[Engine] = None, url: Optional[str] = None) -> None:
        self._engine = engine
        self.url = url or _database_url()

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        with self.engine.begin() as conn:
            yield conn

    def execute(self, sql: str) -> None:
        self.execute_batch([sql])

    def execute_batch(self, statements: Sequence[str]) -> None:
        # no_parameters keeps the driver from reading `%` in literals as placeholders
        try:
            with self.transaction() as conn:
                raw = conn.execution_options(no_parameters=True)
                for sql in statements:
                    raw.exec_driver_sql(sql)
        except SQLAlchemyError as exc:
            raise DatabaseError(str(getattr(exc, "orig", None) or exc)) from exc

    def dump_schema(self) -> str:
        args = [_pg_dump_bin(), "--schema-only", "--schema=public", "--no-owner", libpq_url(self.url)]
        try:
            result = subprocess.run(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=_dump_timeout_s(),
                env=pg_dump_env(self.url),
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise DatabaseError("pg_dump_timeout") from exc
        except FileNotFoundError as exc:
            raise DatabaseError("pg_dump_not_found") from exc

        if result.returncode != 0:
            err = (result.stderr or b"").decode("utf-8", errors="ignore").strip()
            raise DatabaseError(err or f"pg_dump_exit_{result.returncode}")
        return (result.stdout or b"").decode("utf-8")

    def restore_schema(self, ddl: str) -> None:
        logger.info("resetting public schema and replaying %d bytes of DDL", len(ddl))
        self.execute_batch([RESET_PUBLIC_SCHEMA, strip_meta_commands(ddl), RESET_SEARCH_PATH])
