# apps/backend/tracker/db.py
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def make_engine(database_url: str, busy_timeout_s: float = 2.0) -> Engine:
  """
  SQLite engine in WAL mode: one writer at a time, readers never blocked
  by it. The busy timeout bounds how long a writer waits for the lock.
  """
  url = make_url(database_url)
  if url.get_backend_name() != "sqlite":
    # Fail fast: better to know immediately in logs
    raise ValueError(f"tracker needs a sqlite database, got {url.get_backend_name()!r}")

  engine = create_engine(
    url,
    connect_args={"check_same_thread": False, "timeout": busy_timeout_s},
  )

  @event.listens_for(engine, "connect")
  def _set_pragmas(dbapi_conn, _record):
    # pysqlite would otherwise issue its own BEGIN lazily (and never for
    # SELECT); hand transaction control to SQLAlchemy instead.
    dbapi_conn.isolation_level = None
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA journal_mode=WAL")
    cur.execute("PRAGMA synchronous=NORMAL")
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()

  @event.listens_for(engine, "begin")
  def _begin(conn):
    conn.exec_driver_sql("BEGIN")

  return engine


def make_session_factory(engine: Engine) -> sessionmaker:
  return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
