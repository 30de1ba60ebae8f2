"""
FastAPI dependencies for the Badal Trust service
"""
from typing import Generator, Optional
from fastapi import HTTPException, Header, status
from sqlalchemy.orm import Session
from badal_trust.db.database import SessionLocal
from badal_trust.config import settings
from badal_trust.services.authorization import Caller, Role


def get_db() -> Generator[Session, None, None]:
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


async def verify_api_key(x_api_key: Optional[str] = Header(None)) -> str:
    """Verify API key for internal collaborator endpoints"""
    if not x_api_key or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key"
        )
    return x_api_key


async def get_caller(
    x_caller_id: Optional[str] = Header(None),
    x_caller_role: Optional[str] = Header(None)
) -> Caller:
    """
    Caller identity as asserted by the identity gateway.
    Role enforcement per action happens in the services.
    """
    if not x_caller_id or not x_caller_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity"
        )
    try:
        role = Role(x_caller_role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown caller role"
        )
    return Caller(id=x_caller_id, role=role)
