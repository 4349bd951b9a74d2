"""
PostgreSQL repository adapter - Implements UserRepository protocol.

This module provides the PostgreSQL implementation of the domain's
permanent user port using psycopg3 with raw SQL over an async pool.

Conflict Safety:
----------------
create() re-checks email and mobile inside the insert transaction and the
UNIQUE constraints on both columns back that check up: if two completions
race past the SELECT, the loser's INSERT raises UniqueViolation, which is
reported as ConflictError exactly like the pre-check.
"""

import logging
from pathlib import Path

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from src.domain.exceptions import ConflictError, DatabaseUnavailable
from src.domain.models import ConflictCheck, CreatedUser

logger = logging.getLogger(__name__)


class PostgresUserRepository:
    """
    Implements UserRepository protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries for security.
    """

    def __init__(self, pool: AsyncConnectionPool) -> None:
        """
        Initialize repository with connection pool.

        Args:
            pool: psycopg3 AsyncConnectionPool for database connections
        """
        self._pool = pool

    async def check_conflict(self, email: str, mobile_no: str) -> ConflictCheck:
        """
        Look up a permanent user sharing the email or the mobile number.

        Args:
            email: Normalized email address
            mobile_no: Trimmed mobile number

        Returns:
            ConflictCheck naming the conflicting field ("email" wins ties)

        Raises:
            DatabaseUnavailable: the database could not be reached or the query failed
        """
        sql = """
            SELECT email, mobile_no
            FROM users
            WHERE email = %s OR mobile_no = %s
            LIMIT 1
        """

        try:
            async with self._pool.connection() as conn, conn.cursor() as cursor:
                await cursor.execute(sql, (email, mobile_no))
                row = await cursor.fetchone()
        except (errors.Error, PoolTimeout) as e:
            logger.error("Conflict check failed: %s", e)
            raise DatabaseUnavailable() from e

        if row is None:
            return ConflictCheck(exists=False)
        return ConflictCheck(exists=True, conflict_field="email" if row[0] == email else "mobile")

    async def create(
        self, name: str, email: str, mobile_no: str, password_hash: str
    ) -> CreatedUser:
        """
        Insert the permanent user after a transactional conflict re-check.

        Args:
            name: Trimmed display name
            email: Normalized email address
            mobile_no: Trimmed mobile number
            password_hash: bcrypt hash from the domain layer

        Returns:
            CreatedUser with the database-assigned id, role and created_at

        Raises:
            ConflictError: email or mobile already taken
            DatabaseUnavailable: the database could not be reached or the query failed
        """
        check_sql = """
            SELECT email, mobile_no
            FROM users
            WHERE email = %s OR mobile_no = %s
            LIMIT 1
            FOR UPDATE
        """

        insert_sql = """
            INSERT INTO users (name, email, mobile_no, password, is_active)
            VALUES (%s, %s, %s, %s, TRUE)
            RETURNING id, name, email, mobile_no, role, created_at
        """

        try:
            async with self._pool.connection() as conn:
                async with conn.transaction():
                    cursor = conn.cursor(row_factory=dict_row)
                    await cursor.execute(check_sql, (email, mobile_no))
                    existing = await cursor.fetchone()
                    if existing is not None:
                        field = "email" if existing["email"] == email else "mobile"
                        raise ConflictError(field)

                    await cursor.execute(insert_sql, (name, email, mobile_no, password_hash))
                    row = await cursor.fetchone()
        except errors.UniqueViolation as e:
            constraint = getattr(e.diag, "constraint_name", "") or ""
            logger.warning("Concurrent user creation rejected: %s", constraint)
            raise ConflictError("mobile" if "mobile" in constraint else "email") from e
        except (errors.Error, PoolTimeout) as e:
            logger.error("User creation failed: %s", e)
            raise DatabaseUnavailable() from e

        logger.info("User created successfully", extra={"user_id": str(row["id"]), "email": email})
        return CreatedUser(
            id=str(row["id"]),
            name=row["name"],
            email=row["email"],
            mobile_no=row["mobile_no"],
            role=row["role"],
            created_at=row["created_at"],
        )


MIGRATIONS_DIR = Path(__file__).resolve().parents[3] / "migrations"


async def run_migrations(
    pool: AsyncConnectionPool, migrations_dir: Path = MIGRATIONS_DIR
) -> list[str]:
    """
    Apply pending ``*.sql`` files from migrations_dir in filename order.

    Applied file names are recorded in schema_migrations, so each file runs
    once; every file runs in its own transaction together with its record.

    Returns:
        Names of the files applied by this call
    """
    sql_files = sorted(migrations_dir.glob("*.sql")) if migrations_dir.is_dir() else []
    if not sql_files:
        logger.warning("No migrations found in %s", migrations_dir)
        return []

    applied: list[str] = []
    async with pool.connection() as conn:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                name TEXT PRIMARY KEY,
                applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )
        cursor = await conn.execute("SELECT name FROM schema_migrations")
        done = {row[0] for row in await cursor.fetchall()}

        for sql_file in sql_files:
            if sql_file.name in done:
                continue
            try:
                async with conn.transaction():
                    await conn.execute(sql_file.read_text())
                    await conn.execute(
                        "INSERT INTO schema_migrations (name) VALUES (%s)", (sql_file.name,)
                    )
            except errors.Error as e:
                logger.error("Migration %s failed: %s", sql_file.name, e)
                raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
            logger.info("Applied migration %s", sql_file.name)
            applied.append(sql_file.name)

    return applied
