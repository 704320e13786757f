import logging
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

from config import DATABASE_URL as _env_database_url, SSL_CA

logger = logging.getLogger(__name__)

connect_args = {}
engine_kwargs = {}
if not _env_database_url:
    # Fallback to a local SQLite file
    db_dir = os.path.join(".", "data")
    os.makedirs(db_dir, exist_ok=True)
    DATABASE_URL = f"sqlite:///{os.path.join(db_dir, 'app.db')}"
else:
    DATABASE_URL = _env_database_url

if DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}
    if DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every session sees an empty database
        engine_kwargs["poolclass"] = StaticPool
elif DATABASE_URL.startswith("mysql+pymysql://"):
    if SSL_CA:
        connect_args = {"ssl": {"ca": SSL_CA}}
    elif "mysql.database.azure.com" in DATABASE_URL:
        # Enable TLS by default for Azure MySQL if no CA provided
        connect_args = {"ssl": {}}

engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    connect_args=connect_args,
    **engine_kwargs,
)
logger.info("Database engine created for %s", engine.url.render_as_string(hide_password=True))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

class Base(DeclarativeBase):
    pass
