"""Forum socket handshake."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from felicity.core.config import settings
from felicity.core.security import create_access_token
from felicity.main import create_app
from felicity.realtime.broadcaster import InMemoryBroadcaster


@pytest.fixture
def client():
    app = create_app()
    app.state.broadcaster = InMemoryBroadcaster()
    return TestClient(app)


class TestHandshake:
    """Connections without a valid identity are closed before accept."""

    def test_missing_token(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/forum"):
                pass
        assert exc.value.code == 1008

    def test_garbage_token(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/forum?token=not-a-jwt"):
                pass
        assert exc.value.code == 1008

    def test_token_signed_with_another_secret(self, client, monkeypatch):
        token = create_access_token(user_id=1, role="participant")
        monkeypatch.setattr(settings, "JWT_SECRET", "rotated-secret")

        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/forum", headers={"Authorization": f"Bearer {token}"}):
                pass
        assert exc.value.code == 1008
