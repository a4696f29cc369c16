from __future__ import annotations

import pytest

from ernesto_tutor.app.config import Settings


@pytest.fixture
def settings() -> Settings:
    return Settings(
        gemini_api_key="test-key",
        supabase_url="https://example.supabase.co",
        supabase_service_role_key="service-key",
        auth_user="ernesto",
        auth_password="secret",
    )
