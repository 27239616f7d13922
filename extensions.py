from flask_login import LoginManager
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event

db = SQLAlchemy()
login_manager = LoginManager()


def configure_sqlite(engine):
    """Turn on FOREIGN KEY enforcement and, for file databases, IMMEDIATE transactions.

    SQLite has no row locks, so a file database shared by several worker
    threads takes the write lock at BEGIN; two read-then-write units on the
    same rows then run one after the other instead of interleaving. An
    in-memory database is a single shared connection and keeps the driver's
    own transaction handling.
    """
    if engine.dialect.name != "sqlite":
        return

    file_backed = engine.url.database not in (None, "", ":memory:")

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        if file_backed:
            dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    if file_backed:
        @event.listens_for(engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")


def locked(query):
    """Row-lock a query on backends that support SELECT ... FOR UPDATE."""
    if db.engine.dialect.name == "sqlite":
        return query
    return query.with_for_update()
