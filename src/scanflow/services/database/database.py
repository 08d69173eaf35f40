import os
import logging
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager

username = os.getenv('POSTGRES_USERNAME')
password = os.getenv('POSTGRES_PASSWORD')
database_name = os.getenv('POSTGRES_DB')
host = os.getenv('POSTGRES_HOST')

SQLALCHEMY_DATABASE_URL = os.getenv('DATABASE_URL') or f"postgresql://{username}:{password}@{host}:5432/{database_name}"

def create_session_factory(database_url: str):
    if database_url.startswith('sqlite'):
        # in-memory sqlite needs one shared connection across sessions and threads
        db_engine = create_engine(
            database_url,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool
        )
    else:
        db_engine = create_engine(database_url, pool_pre_ping=True)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=db_engine)

SessionLocal = create_session_factory(SQLALCHEMY_DATABASE_URL)
engine = SessionLocal.kw['bind']

Base = declarative_base()

@contextmanager
def get_db(session_factory=None):
    db = (session_factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()

def safe_db_operation(func, *args, session_factory=None, **kwargs):
    with get_db(session_factory) as db:
        try:
            return func(db, *args, **kwargs)
        except SQLAlchemyError as e:
            db.rollback()
            logging.error('Database operation %s failed: %s', func.__name__, e)
            raise
