import json
from cryptography.fernet import Fernet, InvalidToken
from taskbit.core.config import settings
from taskbit.core.exceptions import NotAuthenticatedError
import logging

logger = logging.getLogger(__name__)


def get_cipher():
    """Get Fernet cipher instance for encryption/decryption"""
    key = settings.encryption_key.encode()
    return Fernet(key)


def encrypt_portal_token(uid: str, client_id: str) -> str:
    """Encrypt the owner/client pair carried by a client-portal link"""
    logger.info(f"encrypt_portal_token: Entry - client: {client_id}")

    try:
        cipher = get_cipher()
        payload = json.dumps({"uid": uid, "client_id": client_id})
        token = cipher.encrypt(payload.encode())
        logger.info("encrypt_portal_token: Success")
        return token.decode()
    except Exception as e:
        logger.error(f"encrypt_portal_token: Failure - {e}")
        raise


def decrypt_portal_token(token: str) -> dict:
    """Decrypt a client-portal token; expired or tampered tokens are rejected"""
    logger.info("decrypt_portal_token: Entry")

    try:
        cipher = get_cipher()
        ttl_seconds = settings.portal_link_ttl_days * 24 * 60 * 60
        decrypted = cipher.decrypt(token.encode(), ttl=ttl_seconds)
        payload = json.loads(decrypted.decode())
        logger.info(f"decrypt_portal_token: Success - client: {payload.get('client_id')}")
        return payload
    except (InvalidToken, ValueError) as e:
        logger.error(f"decrypt_portal_token: Failure - {e!r}")
        raise NotAuthenticatedError("Invalid or expired portal link")
