from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from models import Base
import config


def get_session(database_url: str = None):
    """Creates and returns the SQLAlchemy session factory and engine"""
    url = database_url or config.DATABASE_URL
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, connect_args=connect_args)
    session_factory = sessionmaker(bind=engine)
    return session_factory, engine


def init_tables(engine):
    """Creates all settlement tables"""
    Base.metadata.create_all(engine)


Session, _engine = get_session()
