"""Database configuration and initialization."""
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

Base = declarative_base()

engine = None
db_session = None


def _engine_options(database_uri: str) -> dict:
    if database_uri.startswith('sqlite'):
        # one shared connection keeps an in-memory database alive between sessions
        return {'connect_args': {'check_same_thread': False}, 'poolclass': StaticPool}
    return {'pool_pre_ping': True, 'pool_size': 10, 'max_overflow': 20}


def init_db(app):
    """Bind the engine and the request-scoped session to ``app``."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine = create_engine(
        database_uri,
        echo=app.config.get('SQLALCHEMY_ECHO', False),
        **_engine_options(database_uri)
    )
    db_session = scoped_session(sessionmaker(autoflush=False, bind=engine))

    @app.teardown_appcontext
    def remove_session(exception=None):
        if exception:
            db_session.rollback()
        db_session.remove()


def create_all():
    """Create the sales order tables."""
    import fieldsales.models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def get_session():
    return db_session
