import os

import pytest
from cryptography.fernet import Fernet

# Settings are read at import time; tokens need a key before crm_sync loads
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())

from crm_sync.auth.verify import auth_dependency  # noqa: E402
from tests.helpers import FakeCredentialStore  # noqa: E402


@pytest.fixture
def credential_store():
    return FakeCredentialStore()


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "user-123"}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply
