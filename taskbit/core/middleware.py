from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from taskbit.core.exceptions import NotAuthenticatedError
from taskbit.core.firebase_service import verify_firebase_token, get_firestore_client
import logging

logger = logging.getLogger(__name__)

# Missing credentials are reported through NotAuthenticatedError, not FastAPI's 403
security = HTTPBearer(auto_error=False)


def owner_from_token(decoded_token: dict) -> dict:
    """The owner every service call is scoped to; the uid is passed explicitly from here on"""
    uid = decoded_token.get('uid')
    if not uid:
        raise NotAuthenticatedError("Token carries no user id")
    return {
        'uid': uid,
        'email': decoded_token.get('email'),
        'token': decoded_token,
    }


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> dict:
    """Dependency resolving the Bearer Firebase ID token to its owner"""
    logger.info("get_current_user: Entry")

    if credentials is None:
        logger.error("get_current_user: Failure - no bearer token")
        raise NotAuthenticatedError()

    try:
        decoded_token = verify_firebase_token(credentials.credentials)
    except Exception as e:
        logger.error(f"get_current_user: Failure - {e}")
        raise NotAuthenticatedError("Could not validate credentials")

    owner = owner_from_token(decoded_token)
    logger.info(f"get_current_user: Success - {owner['uid']}")
    return owner


def get_db():
    """Dependency returning the async Firestore client"""
    return get_firestore_client()
