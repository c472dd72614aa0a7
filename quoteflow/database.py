"""Database configuration and initialization."""
from sqlalchemy import create_engine, BigInteger, Integer
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()

# BIGINT primary keys only autoincrement on SQLite when declared as INTEGER
BigIdentity = BigInteger().with_variant(Integer, 'sqlite')

# Global session and engine
engine = None
db_session = scoped_session(sessionmaker(autocommit=False, autoflush=False))


def _engine_options(database_uri, echo):
    """Build create_engine() keyword arguments for the configured backend."""
    if database_uri.startswith('sqlite'):
        # One shared connection so an in-memory database survives across sessions
        return {
            'echo': echo,
            'connect_args': {'check_same_thread': False},
            'poolclass': StaticPool,
        }
    return {
        'echo': echo,
        'pool_pre_ping': True,  # Enable connection health checks
        'pool_size': 10,
        'max_overflow': 20,
    }


def init_db(app):
    """Initialize database connection."""
    global engine

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine = create_engine(
        database_uri,
        **_engine_options(database_uri, app.config.get('SQLALCHEMY_ECHO', False))
    )

    db_session.remove()
    db_session.configure(bind=engine)

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_all():
    """Create every mapped table (used by `flask init-db` and the tests)."""
    import quoteflow.models  # noqa: F401  register mappers
    Base.metadata.create_all(bind=engine)


def drop_all():
    """Drop every mapped table."""
    import quoteflow.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session
