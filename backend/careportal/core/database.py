import logging
import time
from functools import wraps

from sqlalchemy.exc import OperationalError
from sqlmodel import SQLModel, create_engine, Session

from .errors import StoreUnavailable
from .settings import settings

logger = logging.getLogger(__name__)

# check_same_thread=False is needed only for SQLite
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)

def create_db_and_tables(bind=None):
    SQLModel.metadata.create_all(bind or engine)

def get_session():
    with Session(engine) as session:
        yield session


def with_store_retry(func):
    """
    Retry a unit of work a bounded number of times when the store reports a
    transient failure (``OperationalError``), then give up with StoreUnavailable.

    The session is rolled back between attempts, so the wrapped unit of work
    must commit at most once. Domain errors pass straight through.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        session = next(arg for arg in args if isinstance(arg, Session))
        attempts = max(1, settings.STORE_RETRY_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                return func(*args, **kwargs)
            except OperationalError as exc:
                session.rollback()
                logger.warning(
                    "Store error in %s (attempt %d/%d): %s", func.__qualname__, attempt, attempts, exc
                )
                if attempt == attempts:
                    raise StoreUnavailable() from exc
                time.sleep(settings.STORE_RETRY_BACKOFF_SECONDS * attempt)
    return wrapper
