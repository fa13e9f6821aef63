"""
=============================================================================
DATABASE.PY — Database Configuration
=============================================================================
Sets up the connection to the data store every action reads and writes.

In DEVELOPMENT: SQLite (a local .db file)
In PRODUCTION: PostgreSQL

Which one is used?
→ If the DATABASE_URL environment variable exists, that URL wins.
→ Otherwise a local SQLite file is used.
→ "sqlite://" (no path) gives an in-memory database shared by every session,
  which is what the test suite runs on.
"""

import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# ─────────────────────────────────────────────────────────────────────────────
# CONNECTION
# ─────────────────────────────────────────────────────────────────────────────

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./questmaster.db")

# Hosting providers hand out "postgres://" URLs but SQLAlchemy wants
# "postgresql://", and we drive it with psycopg (v3).
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+psycopg://", 1)
elif DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+psycopg://", 1)

# ─────────────────────────────────────────────────────────────────────────────
# ENGINE
# ─────────────────────────────────────────────────────────────────────────────
# check_same_thread=False → SQLite only. FastAPI runs sync endpoints in a
# threadpool, so one connection may be used from several threads.

engine_args = {}
if DATABASE_URL.startswith("sqlite"):
    engine_args["connect_args"] = {"check_same_thread": False}
    if DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
        # one connection for everybody, otherwise each session sees an empty db
        engine_args["poolclass"] = StaticPool

engine = create_engine(DATABASE_URL, echo=False, **engine_args)

# ─────────────────────────────────────────────────────────────────────────────
# SESSION
# ─────────────────────────────────────────────────────────────────────────────

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# ─────────────────────────────────────────────────────────────────────────────
# BASE
# ─────────────────────────────────────────────────────────────────────────────

Base = declarative_base()


def get_db():
    """
    Yields a session and closes it when the request is done.

    Used as a FastAPI dependency:
      @app.get("/something")
      def endpoint(db: Session = Depends(get_db)):
          ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Creates every table that does not exist yet."""
    Base.metadata.create_all(bind=engine)
