from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from sakina.config import settings
from sakina.exceptions import SakinaError
import logging

logger = logging.getLogger(__name__)

# ============================================
# ENGINE CONFIGURATION
# ============================================

if settings.DATABASE_URL.startswith("sqlite"):
    # SQLite (local development and tests) cannot share a QueuePool across threads
    engine_kwargs = {
        "connect_args": {"check_same_thread": False},
        "echo": settings.DEBUG,
    }
    if ":memory:" in settings.DATABASE_URL:
        engine_kwargs["poolclass"] = StaticPool
else:
    engine_kwargs = {
        "poolclass": QueuePool,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,  # Test connections before using
        "echo": settings.DEBUG,
    }

    # Add SSL for PostgreSQL in production
    if settings.is_production and "postgresql" in settings.DATABASE_URL:
        engine_kwargs["connect_args"] = {
            "sslmode": "require",
            "connect_timeout": 10
        }

engine = create_engine(settings.DATABASE_URL, **engine_kwargs)

# ============================================
# SESSION CONFIGURATION
# ============================================

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False  # Prevent detached instance errors
)

Base = declarative_base()

# ============================================
# CONNECTION POOL MONITORING
# ============================================

@event.listens_for(engine, "connect")
def receive_connect(dbapi_conn, connection_record):
    """Log new database connections"""
    logger.debug("New database connection established")

# ============================================
# DATABASE DEPENDENCY
# ============================================

def get_db():
    """
    Database session dependency with proper error handling
    """
    db = SessionLocal()
    try:
        yield db
    except SakinaError:
        db.rollback()
        raise
    except Exception as e:
        logger.error(f"Database session error: {e}")
        db.rollback()
        raise
    finally:
        db.close()

# ============================================
# HEALTH CHECK
# ============================================

def check_db_connection() -> bool:
    """
    Check if database is accessible
    Returns True if healthy, False otherwise
    """
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False

def get_pool_status() -> dict:
    """
    Get connection pool statistics
    """
    pool = engine.pool
    if not isinstance(pool, QueuePool):
        return {"pool_class": type(pool).__name__}

    return {
        "pool_size": pool.size(),
        "checked_in": pool.checkedin(),
        "checked_out": pool.checkedout(),
        "overflow": pool.overflow(),
        "total_connections": pool.size() + pool.overflow()
    }
