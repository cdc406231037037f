from dataclasses import dataclass

import mysql.connector
from mysql.connector import errorcode, pooling
from mysql.connector.errors import Error

from config import Config


MESSAGES_TABLE_DDL = """
    CREATE TABLE IF NOT EXISTS messages (
      id BIGINT AUTO_INCREMENT PRIMARY KEY,
      username VARCHAR(191) NOT NULL,
      text TEXT NOT NULL,
      ts BIGINT NOT NULL,
      created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
      INDEX idx_messages_ts (ts)
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4;
"""


@dataclass(frozen=True)
class DatabaseSettings:
    host: str
    port: int
    user: str
    password: str
    name: str


def settings_from_config(config=Config) -> DatabaseSettings:
    if not (config.DB_HOST and config.DB_USER and config.DB_NAME):
        raise RuntimeError(
            "DB_HOST, DB_USER y DB_NAME son obligatorios cuando STORE_BACKEND=mysql."
        )
    return DatabaseSettings(
        host=config.DB_HOST,
        port=config.DB_PORT,
        user=config.DB_USER,
        password=config.DB_PASSWORD or "",
        name=config.DB_NAME,
    )


def _create_database_if_missing(db_settings: DatabaseSettings):
    """Create the configured database if it does not exist yet."""
    bootstrap_conn = mysql.connector.connect(
        host=db_settings.host,
        port=db_settings.port,
        user=db_settings.user,
        password=db_settings.password,
    )
    try:
        cursor = bootstrap_conn.cursor()
        cursor.execute(
            f"CREATE DATABASE IF NOT EXISTS `{db_settings.name}` "
            "DEFAULT CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci;"
        )
    finally:
        bootstrap_conn.close()


def create_pool(
    db_settings: DatabaseSettings,
    size: int = 5,
    *,
    ensure_database: bool = False,
) -> pooling.MySQLConnectionPool:
    """Open the long-lived connection pool shared by every request."""

    def _open():
        return pooling.MySQLConnectionPool(
            pool_name="relay",
            pool_size=size,
            host=db_settings.host,
            port=db_settings.port,
            user=db_settings.user,
            password=db_settings.password,
            database=db_settings.name,
        )

    try:
        return _open()
    except Error as exc:
        if ensure_database and exc.errno == errorcode.ER_BAD_DB_ERROR:
            _create_database_if_missing(db_settings)
            return _open()
        raise


def init_schema(pool):
    conn = pool.get_connection()
    try:
        c = conn.cursor()
        c.execute(MESSAGES_TABLE_DDL)
        conn.commit()
    finally:
        conn.close()
