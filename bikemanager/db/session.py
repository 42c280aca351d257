from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from bikemanager.core.config import settings


def _engine_options(uri: str) -> dict:
    if uri.startswith("sqlite"):
        # Worker threads share the file-backed database
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 10,         # scanner + reminder workers + API requests
        "max_overflow": 10,
        "pool_recycle": 300,     # Recycle connections every 5 minutes
        "pool_pre_ping": True,   # Validate connections before use
        "pool_timeout": 30,
    }


engine = create_engine(settings.SQLALCHEMY_DATABASE_URI, echo=False, **_engine_options(settings.SQLALCHEMY_DATABASE_URI))

SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)
