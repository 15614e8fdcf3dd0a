import secrets
import string
import uuid
from sqlalchemy.orm import Session


# URL-safe alphabet for share tokens
CHARSET = string.ascii_letters + string.digits


def generate_share_token(length: int = 12, db: Session = None) -> str:
    """
    Generate a unique share token.

    Args:
        length: Length of the token
        db: Database session for uniqueness check

    Returns:
        A share token not used by any existing share link

    Note:
        - 12 chars: 62^12 combinations, collisions are practically impossible
          but the check keeps the unique index from ever rejecting an insert
    """
    from ..models import ShareLink  # Import here to avoid circular dependency

    max_attempts = 10

    for _ in range(max_attempts):
        token = ''.join(secrets.choice(CHARSET) for _ in range(length))

        if db is None:
            return token

        existing = db.query(ShareLink.id).filter(ShareLink.share_token == token).first()
        if not existing:
            return token

    raise ValueError("Unable to generate unique share token")


def generate_session_id() -> str:
    """Opaque, globally unique viewing-session identifier."""
    return str(uuid.uuid4())
