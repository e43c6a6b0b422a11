from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

Base = declarative_base()


def create_engine_and_sessionmaker(database_url: str) -> tuple[Engine, sessionmaker]:
    if not database_url:
        raise RuntimeError("DATABASE_URL is not set. Check your .env file.")

    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False} if database_url.startswith("sqlite") else {},
        pool_pre_ping=True,
    )
    # Intents are handed out after the session closes, so keep loaded attributes.
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    return engine, SessionLocal
