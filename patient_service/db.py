# patient_service/db.py

import os
from typing import Generator

from sqlmodel import Session, SQLModel, create_engine

# 1. Load Config
# We prioritize DATABASE_URL (standard for Docker), fallback to PG_DSN
PG_DSN = os.getenv("DATABASE_URL") or os.getenv("PG_DSN")
if not PG_DSN:
    raise RuntimeError("DATABASE_URL environment variable is not set")

# 2. Create Engine
# pool_pre_ping=True reconnects if the DB drops the connection
engine = create_engine(PG_DSN, pool_pre_ping=True, echo=False)


# 3. Initialization
def init_db() -> None:
    """
    Creates the patients table if it doesn't exist.
    IMPORTANT: import the models before calling this, or SQLModel won't know the table exists.
    """
    SQLModel.metadata.create_all(engine)
    print("Patient Database initialized.")


# 4. Dependency for FastAPI
def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
