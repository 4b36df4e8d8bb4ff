# storefront/extensions.py
from flask_sqlalchemy import SQLAlchemy
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_migrate import Migrate
from sqlalchemy import event

db = SQLAlchemy()
jwt = JWTManager()
cors = CORS()
migrate = Migrate()


def use_immediate_transactions(engine):
    """
    SQLite only: let SQLAlchemy emit BEGIN IMMEDIATE itself so concurrent
    writers queue on the busy timeout instead of failing on lock upgrade.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_conn, _record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
