"""
Pytest configuration for testing
"""

import os
from unittest.mock import MagicMock

import fakeredis
import pytest

# Set up environment variables for testing before any imports
os.environ["FIREBASE_PROJECT_ID"] = "test-project"
os.environ["FIREBASE_CREDENTIALS_PATH"] = "/tmp/test-creds.json"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["FRONTEND_URL"] = "https://app.example.com"
os.environ["ENCRYPTION_KEY"] = "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA="
os.environ["REDIS_URL"] = "redis://localhost:6379/1"
os.environ["REDIS_PASSWORD"] = ""
os.environ["SENDGRID_API_KEY"] = ""

from fake_firestore import FakeFirestore  # noqa: E402


# Mock Firebase Admin so nothing reaches Google
@pytest.fixture(autouse=True)
def mock_firebase_admin(monkeypatch):
    """Mock Firebase Admin SDK to avoid initialization issues in tests"""
    mock_credentials = MagicMock()
    monkeypatch.setattr("firebase_admin.credentials.Certificate", mock_credentials.Certificate)
    monkeypatch.setattr("firebase_admin.initialize_app", MagicMock())
    monkeypatch.setattr("firebase_admin.firestore_async.client", MagicMock())

    mock_auth = MagicMock()
    from taskbit.core.firebase_service import FirebaseService, set_firebase_service
    set_firebase_service(FirebaseService(auth_provider=mock_auth, firestore_provider=MagicMock()))

    yield mock_auth

    set_firebase_service(None)


@pytest.fixture(autouse=True)
def fake_cache():
    """Redis cache backed by fakeredis"""
    from taskbit.core.cache import set_cache
    from taskbit.core.redis_cache import RedisCache

    cache = RedisCache(client=fakeredis.FakeRedis())
    set_cache(cache)
    yield cache
    set_cache(None)


@pytest.fixture
def fake_db():
    return FakeFirestore()


@pytest.fixture
def uid():
    return "user_123"


@pytest.fixture
def activity_log(fake_db):
    from taskbit.services.activity_log_service import ActivityLogService
    return ActivityLogService(db=fake_db)


@pytest.fixture
def project_service(fake_db, activity_log):
    from taskbit.services.project_service import ProjectService
    return ProjectService(db=fake_db, activity_log=activity_log)


@pytest.fixture
def time_entry_service(fake_db, activity_log, project_service):
    from taskbit.services.time_entry_service import TimeEntryService
    return TimeEntryService(db=fake_db, project_service=project_service, activity_log=activity_log)


@pytest.fixture
def invoice_service(fake_db, activity_log):
    from taskbit.services.invoice_service import InvoiceService
    return InvoiceService(db=fake_db, activity_log=activity_log)


@pytest.fixture
def client_service(fake_db, activity_log, project_service, invoice_service):
    from taskbit.services.client_service import ClientService
    return ClientService(
        db=fake_db,
        activity_log=activity_log,
        project_service=project_service,
        invoice_service=invoice_service,
    )
