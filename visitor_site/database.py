# SQLAlchemy setup for the "sql" storage backend.
#
# Local development uses a SQLite file inside the data directory. Set
# DATABASE_URL to point at another database.

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def make_session_factory(database_url: str):
    """Creates the engine and tables and returns a configured sessionmaker."""
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, connect_args=connect_args)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
