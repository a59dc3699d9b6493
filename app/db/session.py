from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from app.core.config import settings


def _engine_options() -> dict:
    options = {
        "pool_pre_ping": True,
        "echo": settings.DEBUG,
    }
    if settings.DATABASE_URL.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        return options

    options.update(
        pool_size=20,
        max_overflow=10,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=3600,
    )
    if settings.is_postgres:
        # Every store call carries a bounded timeout
        options["connect_args"] = {
            "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
            "connect_timeout": settings.DB_POOL_TIMEOUT,
        }
    return options


engine = create_engine(settings.DATABASE_URL, **_engine_options())

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Database session generator for FastAPI dependency injection"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
