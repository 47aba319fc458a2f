from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from urllib.parse import quote_plus
from libtrack.config import settings


def build_database_url() -> str:
    """Return the configured URL, or build a postgres URL from the db_* settings."""
    if settings.database_url:
        return settings.database_url
    
    if not (settings.db_name and settings.db_user and settings.db_password is not None):
        raise RuntimeError("Database is not configured: set DATABASE_URL or DB_NAME/DB_USER/DB_PASSWORD")
    
    db_user = quote_plus(settings.db_user)
    db_password = quote_plus(settings.db_password)
    return f"postgresql://{db_user}:{db_password}@{settings.db_host}:{settings.db_port}/{settings.db_name}"


DATABASE_URL = build_database_url()

if DATABASE_URL.startswith("sqlite"):
    # SQLite is used for local development and tests; sessions cross threads (sweeper)
    engine = create_engine(
        DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False}
    )
else:
    # SSL connection arguments
    connect_args = {}
    if settings.db_ssl_mode != "disable":
        connect_args["sslmode"] = settings.db_ssl_mode
        if settings.db_ssl_cert:
            connect_args["sslcert"] = settings.db_ssl_cert
        if settings.db_ssl_key:
            connect_args["sslkey"] = settings.db_ssl_key
        if settings.db_ssl_root_cert:
            connect_args["sslrootcert"] = settings.db_ssl_root_cert
    
    engine = create_engine(
        DATABASE_URL,
        pool_pre_ping=True,
        pool_recycle=300,
        pool_size=10,
        max_overflow=20,
        echo=False,
        connect_args=connect_args
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
