# exchange_service/db.py

import os
from typing import Generator

from sqlmodel import Session, SQLModel, create_engine

# 1. Load the Connection String
# Matches the DATABASE_URL environment variable in docker-compose
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    # Fallback for local testing if needed
    DATABASE_URL = os.getenv("PG_DSN")

if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable is not set")

# 2. Create the Engine
# pool_pre_ping=True ensures we don't use stale connections after a DB restart
engine = create_engine(DATABASE_URL, pool_pre_ping=True)


# 3. Initialize Database
def init_db() -> None:
    """
    Creates the pd_exchanges and hd_exchanges tables if they don't exist.
    The table models must be imported before this runs.
    """
    SQLModel.metadata.create_all(engine)
    print("Exchange Database initialized.")


# 4. FastAPI Session Dependency
def get_session() -> Generator[Session, None, None]:
    """
    FastAPI dependency that provides a database session.
    Automatically closes the session after the request is finished.
    """
    with Session(engine) as session:
        yield session


def close_db_connection() -> None:
    engine.dispose()
    print("Exchange Service database connection closed.")
