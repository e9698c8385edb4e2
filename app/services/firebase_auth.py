from firebase_admin import auth
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.database.models import User
from app.database.connection import get_db
from app.services.firebase_app import init_firebase
from app.services.schedule_store import get_or_create_user

init_firebase()

# Scheme to extract token. auto_error=False so a missing token gets our own 401 detail.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


def decode_firebase_token(token: Optional[str]) -> dict:
    """
    Verifies a Firebase ID token and returns its claims.
    Raises HTTPException(401) if the token is missing, invalid or expired.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception

    try:
        return auth.verify_id_token(token)
    except auth.ExpiredIdTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except auth.InvalidIdTokenError:
        raise credentials_exception
    except Exception:
        raise credentials_exception


async def get_current_user(
        token: str = Depends(oauth2_scheme),
        db: AsyncSession = Depends(get_db)
) -> User:
    """
    Required dependency: verifies the Firebase ID token and returns the user's
    profile, creating it on first sight.
    """
    decoded_token = decode_firebase_token(token)
    return await get_or_create_user(db, decoded_token['uid'], decoded_token.get('email'))
