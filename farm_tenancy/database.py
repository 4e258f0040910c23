"""Database configuration and initialization."""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
db_session = None
_session_factory = None


def build_engine(database_uri: str, echo: bool = False, pool_size: int = 10,
                 max_overflow: int = 20, connect_timeout: int = 5) -> Engine:
    """Create an engine with pool settings suited to the database dialect."""
    if database_uri.startswith('sqlite'):
        if ':memory:' in database_uri or database_uri == 'sqlite://':
            # Single shared connection so every session sees the same database
            return create_engine(
                database_uri,
                echo=echo,
                connect_args={'check_same_thread': False},
                poolclass=StaticPool,
            )
        return create_engine(
            database_uri,
            echo=echo,
            connect_args={'check_same_thread': False, 'timeout': 30},
        )

    return create_engine(
        database_uri,
        echo=echo,
        pool_pre_ping=True,  # Enable connection health checks
        pool_size=pool_size,
        max_overflow=max_overflow,
        connect_args={'connect_timeout': connect_timeout},
    )


@event.listens_for(Engine, 'connect')
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite ignores FOREIGN KEY constraints unless asked per connection."""
    if type(dbapi_connection).__module__.startswith('sqlite3'):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


def init_db(app):
    """Initialize database connection."""
    global engine, db_session, _session_factory

    engine = build_engine(
        app.config['SQLALCHEMY_DATABASE_URI'],
        echo=app.config.get('SQLALCHEMY_ECHO', False),
        pool_size=app.config.get('SQLALCHEMY_POOL_SIZE', 10),
        max_overflow=app.config.get('SQLALCHEMY_MAX_OVERFLOW', 20),
        connect_timeout=app.config.get('DB_CONNECT_TIMEOUT', 5),
    )

    _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db_session = scoped_session(_session_factory)

    Base.query = db_session.query_property()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_all():
    """Create every table registered on Base."""
    import farm_tenancy.models  # noqa: F401  (registers the mappers)
    Base.metadata.create_all(bind=engine)


def drop_all():
    """Drop every table registered on Base."""
    import farm_tenancy.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


def new_session():
    """Open an independent session, outside the request-scoped one."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized.")
    return _session_factory()
