# miconsultorio/database.py
from __future__ import annotations
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from .config import settings

DATABASE_URL: str | None = settings.DATABASE_URL
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL no está configurada (revisa tu .env).")


def make_engine(url: str):
    """
    Crea el engine según el tipo de base.
    SQLite en memoria comparte una sola conexión (StaticPool) para que todas
    las sesiones vean las mismas tablas.
    """
    if url.startswith("sqlite"):
        kwargs = {
            "connect_args": {"check_same_thread": False},  # requerido por SQLite en hilos
            "future": True,
        }
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True
        return create_engine(url, **kwargs)

    # Postgres u otros (producción)
    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        future=True,
    )


engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """
    Crea las tablas si no existen. Importa modelos antes para que SQLAlchemy
    conozca todos los metadatos.
    """
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
