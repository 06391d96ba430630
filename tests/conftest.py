from unittest.mock import AsyncMock, Mock

import pytest

from vicar_router.services.pbx_client import PbxClient


class FakeClock:
    """Manually advanced clock for expiry and eviction tests."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pbx_client():
    """PBX client whose calls are AsyncMocks returning errcode 0 by default."""
    client = Mock(spec=PbxClient)
    client.request_token = AsyncMock(
        return_value={"errcode": 0, "errmsg": "SUCCESS", "access_token": "tok-1", "access_token_expire_time": 1800}
    )
    client.list_sessions = AsyncMock(return_value={"errcode": 0, "list": []})
    client.transfer_session = AsyncMock(return_value={"errcode": 0, "errmsg": "SUCCESS"})
    return client


@pytest.fixture
def mock_env(monkeypatch):
    """Set test environment variables."""
    monkeypatch.setenv("VERIFY_TOKEN", "verify-secret")
    monkeypatch.setenv("WHATSAPP_TOKEN", "wa-token")
    monkeypatch.setenv("PHONE_NUMBER_ID", "123456789")
    monkeypatch.setenv("QUEUE_BRANCH_A_DEFAULT", "6400")
    monkeypatch.setenv("QUEUE_BRANCH_A_POST_SALE", "6401")
    monkeypatch.setenv("QUEUE_BRANCH_B_DEFAULT", "6402")
    monkeypatch.setenv("QUEUE_BRANCH_B_POST_SALE", "6403")
