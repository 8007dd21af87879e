import logging

import mysql.connector
from mysql.connector import pooling
from flask import current_app

logger = logging.getLogger(__name__)

POOL_EXTENSION_KEY = 'mysql_pool'


class DBCursor:
    """Cursor usable as ``with conn.cursor(dictionary=True) as cursor:``; closes itself on exit."""

    def __init__(self, cursor):
        self._cursor = cursor

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            self._cursor.close()
        except mysql.connector.Error:
            logger.warning("Failed to close cursor", exc_info=True)

    def __getattr__(self, name):
        return getattr(self._cursor, name)


class DBConnection:
    """
    A connection borrowed from the pool.

    Leaving the ``with`` block rolls back uncommitted work if the block
    raised, then hands the connection back to the pool. Anything else
    (commit, is_connected, ...) is passed through to the pooled connection.
    """

    def __init__(self, pooled):
        self._pooled = pooled

    def cursor(self, *args, **kwargs):
        return DBCursor(self._pooled.cursor(*args, **kwargs))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            try:
                self._pooled.rollback()
            except mysql.connector.Error:
                logger.warning("Rollback failed", exc_info=True)
        try:
            self._pooled.close()
        except mysql.connector.Error:
            logger.warning("Failed to return connection to the pool", exc_info=True)

    def __getattr__(self, name):
        return getattr(self._pooled, name)


def init_pool(app):
    """Create the application's connection pool from its MySQL settings."""
    pool = pooling.MySQLConnectionPool(
        pool_name=app.config['MYSQL_POOL_NAME'],
        pool_size=app.config['MYSQL_POOL_SIZE'],
        pool_reset_session=True,
        host=app.config['MYSQL_HOST'],
        port=app.config['MYSQL_PORT'],
        user=app.config['MYSQL_USER'],
        password=app.config['MYSQL_PASSWORD'],
        database=app.config['MYSQL_DATABASE'],
    )
    app.extensions[POOL_EXTENSION_KEY] = pool
    logger.info("MySQL pool '%s' ready (%d connections)",
                app.config['MYSQL_POOL_NAME'], app.config['MYSQL_POOL_SIZE'])
    return pool


def get_db_connection():
    """Borrow a connection from the current app's pool, creating the pool on first use."""
    pool = current_app.extensions.get(POOL_EXTENSION_KEY)
    if pool is None:
        pool = init_pool(current_app)
    return DBConnection(pool.get_connection())
