"""
Tests for Firebase integration with dependency injection
"""

import pytest
from unittest.mock import MagicMock
from datetime import datetime, timedelta, timezone

from fastapi.security import HTTPAuthorizationCredentials

from taskbit.core.firebase_service import (
    FirebaseService,
    get_firebase_service,
    set_firebase_service,
    verify_firebase_token,
)
from taskbit.core.exceptions import NotAuthenticatedError
from taskbit.core.middleware import get_current_user, owner_from_token


@pytest.fixture
def mock_auth_provider():
    """Mock Firebase auth provider"""
    provider = MagicMock()
    provider.verify_id_token.return_value = {
        "uid": "test_user_123",
        "email": "test@example.com",
        "exp": int((datetime.now(timezone.utc) + timedelta(hours=1)).timestamp()),
    }
    return provider


@pytest.fixture
def mock_firestore_provider():
    """Mock Firestore provider"""
    provider = MagicMock()
    provider.client.return_value = MagicMock()
    return provider


class TestFirebaseServiceDependencyInjection:
    """Test Firebase service with dependency injection"""

    def test_verify_token_with_mock_provider(self, mock_auth_provider):
        service = FirebaseService(auth_provider=mock_auth_provider)

        result = service.verify_token("mock_token_123")

        assert result["uid"] == "test_user_123"
        mock_auth_provider.verify_id_token.assert_called_once_with("mock_token_123")

    def test_verify_token_propagates_errors(self, mock_auth_provider):
        mock_auth_provider.verify_id_token.side_effect = Exception("Token expired")
        service = FirebaseService(auth_provider=mock_auth_provider)

        with pytest.raises(Exception) as exc_info:
            service.verify_token("expired_token")

        assert "Token expired" in str(exc_info.value)

    def test_firestore_client_from_provider(self, mock_firestore_provider):
        service = FirebaseService(firestore_provider=mock_firestore_provider)

        assert service.get_firestore_client() is mock_firestore_provider.client.return_value


class TestPlanClaims:
    """Custom claims driven by the subscription lifecycle"""

    def test_set_plan_claim(self, mock_auth_provider):
        service = FirebaseService(auth_provider=mock_auth_provider)

        service.set_plan_claim("user_1", "pro")

        mock_auth_provider.set_custom_user_claims.assert_called_once_with("user_1", {"stripe_role": "pro"})

    def test_status_travels_with_plan(self, mock_auth_provider):
        service = FirebaseService(auth_provider=mock_auth_provider)

        service.set_plan_claim("user_1", "pro", "past_due")

        mock_auth_provider.set_custom_user_claims.assert_called_once_with(
            "user_1", {"stripe_role": "pro", "subscription_status": "past_due"}
        )

    def test_revoke_plan_claim_clears_all_claims(self, mock_auth_provider):
        service = FirebaseService(auth_provider=mock_auth_provider)

        service.revoke_plan_claim("user_1")

        mock_auth_provider.set_custom_user_claims.assert_called_once_with("user_1", None)

    def test_claim_failure_propagates(self, mock_auth_provider):
        mock_auth_provider.set_custom_user_claims.side_effect = Exception("user not found")
        service = FirebaseService(auth_provider=mock_auth_provider)

        with pytest.raises(Exception):
            service.set_plan_claim("missing", "pro")


class TestFirebaseServiceSingleton:
    """Test Firebase service singleton pattern"""

    def test_get_firebase_service_returns_same_instance(self):
        assert get_firebase_service() is get_firebase_service()

    def test_set_firebase_service_replaces_instance(self, mock_auth_provider):
        mock_service = FirebaseService(auth_provider=mock_auth_provider)

        set_firebase_service(mock_service)

        assert get_firebase_service() is mock_service

    def test_verify_firebase_token_wrapper(self, mock_auth_provider):
        set_firebase_service(FirebaseService(auth_provider=mock_auth_provider))

        result = verify_firebase_token("test_token")

        assert result["uid"] == "test_user_123"


class TestCurrentUser:
    """The authenticated owner handed to every route"""

    @pytest.mark.asyncio
    async def test_current_user_from_token(self, mock_auth_provider):
        set_firebase_service(FirebaseService(auth_provider=mock_auth_provider))
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="good_token")

        user = await get_current_user(credentials)

        assert user["uid"] == "test_user_123"
        assert user["email"] == "test@example.com"

    @pytest.mark.asyncio
    async def test_invalid_token_is_unauthorized(self, mock_auth_provider):
        mock_auth_provider.verify_id_token.side_effect = Exception("Invalid token")
        set_firebase_service(FirebaseService(auth_provider=mock_auth_provider))
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="bad_token")

        with pytest.raises(NotAuthenticatedError) as exc_info:
            await get_current_user(credentials)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_credentials_are_unauthorized(self):
        with pytest.raises(NotAuthenticatedError):
            await get_current_user(None)

    def test_token_without_uid_is_rejected(self):
        with pytest.raises(NotAuthenticatedError):
            owner_from_token({"email": "test@example.com"})


class TestFirebaseServiceLogging:
    """Test Firebase service logging"""

    def test_verify_token_logs_success(self, mock_auth_provider, caplog):
        service = FirebaseService(auth_provider=mock_auth_provider)

        with caplog.at_level("INFO"):
            service.verify_token("test_token")

        assert "verify_token: Entry" in caplog.text
        assert "verify_token: Success" in caplog.text

    def test_verify_token_logs_failure(self, mock_auth_provider, caplog):
        mock_auth_provider.verify_id_token.side_effect = Exception("Test error")
        service = FirebaseService(auth_provider=mock_auth_provider)

        with caplog.at_level("ERROR"):
            with pytest.raises(Exception):
                service.verify_token("invalid_token")

        assert "verify_token: Failure" in caplog.text
