"""FastAPI dependencies."""

from typing import Generator

from sqlalchemy.orm import Session

from lifecycle.db.session import SessionLocal
from lifecycle.services.mail_transport import MailTransport, get_default_transport


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_mail_transport() -> MailTransport:
    """Mail transport dependency (overridden in tests)."""
    return get_default_transport()
