"""
Tests for API Endpoints

This test suite verifies:
- Root and status endpoints
- One-shot animation endpoint
- Session lookup endpoint
- WebSocket animation protocol, including co-session broadcast
- Connection gateway delivery

Run with: pytest tests/test_api_endpoints.py -v
"""

import asyncio
import os
import sys
import uuid
import pytest
from unittest.mock import AsyncMock, MagicMock

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

from api.app import app
from api.gateway import ConnectionGateway, generate_connection_id, update_message
from core.face_transform import FaceTransformEngine
from core.session_manager import AnimationUpdate, Delivery


def unique_session_id() -> str:
    """Session ids are unique per test because the manager is shared."""
    return f"test_{uuid.uuid4().hex[:8]}"


@pytest.fixture
def client():
    """Create test client with lifespan (engine, manager, sweeper)."""
    with TestClient(app) as test_client:
        yield test_client


class TestSystemEndpoints:
    """Tests for root and status endpoints."""

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert data["name"] == "Live Face Overlay API"
        assert data["websocket"] == "/ws/animate"

    def test_status(self, client):
        response = client.get("/status")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "running"
        for key in ("activeSessions", "activeConnections", "totalFrames", "serverUptime", "timestamp"):
            assert key in data


class TestAnimateEndpoint:
    """Tests for the one-shot animation endpoint."""

    def test_animate(self, client, face_builder):
        response = client.post(
            "/animate",
            json={"landmarks": face_builder(mouth_bottom=(0.5, 0.66)), "imageId": "img_42"},
        )
        assert response.status_code == 200

        data = response.json()
        assert data["expression"] == "surprised"
        assert data["imageId"] == "img_42"
        assert data["detailedData"]["mouth"]["shape"] == "open"
        assert data["transform"]["mouthCutout"]["visible"] is True
        assert isinstance(data["timestamp"], int)

    def test_animate_without_landmarks(self, client):
        """Missing landmarks give the neutral animation, not an error."""
        response = client.post("/animate", json={})
        assert response.status_code == 200
        assert response.json()["expression"] == "neutral"

    def test_animate_with_malformed_landmarks(self, client):
        response = client.post("/animate", json={"landmarks": "nonsense"})
        assert response.status_code == 200

        data = response.json()
        assert data["expression"] == "neutral"
        assert data["transform"]["filter"] == "brightness(1.0) contrast(1.0)"


class TestSessionEndpoint:
    """Tests for session lookup."""

    def test_unknown_session(self, client):
        response = client.get(f"/sessions/{unique_session_id()}")
        assert response.status_code == 404


class TestAnimationWebSocket:
    """Tests for the /ws/animate protocol."""

    def test_start_frame_stop(self, client, neutral_face):
        session_id = unique_session_id()

        with client.websocket_connect("/ws/animate") as ws:
            ws.send_json({"type": "start-animation", "sessionId": session_id, "imageId": "img_1"})
            started = ws.receive_json()
            assert started == {"type": "animation-started", "sessionId": session_id, "imageId": "img_1"}

            ws.send_json({"type": "face-landmarks", "landmarks": neutral_face})
            update = ws.receive_json()
            assert update["type"] == "animation-update"
            assert update["sessionId"] == session_id
            assert update["expression"] == "neutral"
            assert "transform" in update
            assert isinstance(update["timestamp"], int)

            info = client.get(f"/sessions/{session_id}").json()
            assert info["totalFrames"] == 1
            assert info["imageIds"] == ["img_1"]
            assert len(info["connections"]) == 1

            ws.send_json({"type": "stop-animation"})
            stopped = ws.receive_json()
            assert stopped == {"type": "animation-stopped", "sessionId": session_id, "reason": "stopped"}

        assert client.get(f"/sessions/{session_id}").status_code == 404

    def test_generated_session_id(self, client):
        with client.websocket_connect("/ws/animate") as ws:
            ws.send_json({"type": "start-animation"})
            started = ws.receive_json()
            assert started["sessionId"]
            assert started["imageId"] is None

    def test_frame_before_start_is_dropped(self, client, neutral_face):
        with client.websocket_connect("/ws/animate") as ws:
            ws.send_json({"type": "face-landmarks", "landmarks": neutral_face})
            # The next message must be the reply to the unknown type,
            # proving no update was produced for the frame
            ws.send_json({"type": "ping"})
            reply = ws.receive_json()
            assert reply["type"] == "error"
            assert reply["code"] == "UNKNOWN_MESSAGE"

    def test_frame_after_stop_is_dropped(self, client, neutral_face):
        with client.websocket_connect("/ws/animate") as ws:
            ws.send_json({"type": "start-animation", "sessionId": unique_session_id()})
            ws.receive_json()
            ws.send_json({"type": "stop-animation"})
            ws.receive_json()

            ws.send_json({"type": "face-landmarks", "landmarks": neutral_face})
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["code"] == "UNKNOWN_MESSAGE"

    def test_invalid_json(self, client):
        with client.websocket_connect("/ws/animate") as ws:
            ws.send_text("{not json")
            reply = ws.receive_json()
            assert reply["type"] == "error"
            assert reply["code"] == "INVALID_MESSAGE"

            ws.send_text("[1, 2, 3]")
            assert ws.receive_json()["code"] == "INVALID_MESSAGE"

    def test_binary_frame_keeps_connection_open(self, client):
        with client.websocket_connect("/ws/animate") as ws:
            ws.send_bytes(b"\x00\x01")
            reply = ws.receive_json()
            assert reply["type"] == "error"
            assert reply["code"] == "INVALID_MESSAGE"

            ws.send_json({"type": "start-animation", "sessionId": unique_session_id()})
            assert ws.receive_json()["type"] == "animation-started"

    def test_malformed_start(self, client):
        with client.websocket_connect("/ws/animate") as ws:
            ws.send_json({"type": "start-animation", "sessionId": 123})
            reply = ws.receive_json()
            assert reply["type"] == "error"
            assert reply["code"] == "INVALID_MESSAGE"

    def test_malformed_landmarks_animate_neutral(self, client):
        with client.websocket_connect("/ws/animate") as ws:
            ws.send_json({"type": "start-animation", "sessionId": unique_session_id()})
            ws.receive_json()

            ws.send_json({"type": "face-landmarks", "landmarks": {"bad": True}})
            update = ws.receive_json()
            assert update["type"] == "animation-update"
            assert update["expression"] == "neutral"

    def test_broadcast_to_viewer(self, client, face_builder):
        session_id = unique_session_id()

        with client.websocket_connect("/ws/animate") as sender, \
                client.websocket_connect("/ws/animate") as viewer:
            sender.send_json({"type": "start-animation", "sessionId": session_id})
            sender.receive_json()
            viewer.send_json({"type": "start-animation", "sessionId": session_id})
            viewer.receive_json()

            sender.send_json({
                "type": "face-landmarks",
                "landmarks": face_builder(mouth_bottom=(0.5, 0.66)),
            })
            own = sender.receive_json()
            seen = viewer.receive_json()

            assert own["type"] == "animation-update"
            assert own["expression"] == "surprised"
            assert seen == own

            info = client.get(f"/sessions/{session_id}").json()
            assert len(info["connections"]) == 2
            assert info["expressions"] == {"surprised": 1}


class TestConnectionGateway:
    """Tests for ConnectionGateway delivery."""

    @pytest.fixture
    def update(self):
        engine = FaceTransformEngine({})
        descriptor = engine.compute_descriptor(None)
        return AnimationUpdate(
            session_id="session_x",
            transform=engine.compute_render_transform(descriptor),
            expression=descriptor.expression,
            timestamp=descriptor.timestamp,
            frame_id=descriptor.frame_id,
        )

    def test_connection_id_format(self):
        connection_id = generate_connection_id()
        assert connection_id.startswith("conn_")
        assert len(connection_id) == 13

    def test_register_unregister(self):
        gateway = ConnectionGateway()
        connection_id = gateway.register(MagicMock())
        assert connection_id in gateway
        assert len(gateway) == 1

        gateway.unregister(connection_id)
        assert connection_id not in gateway
        gateway.unregister(connection_id)

    def test_failed_send_does_not_stop_delivery(self, update):
        gateway = ConnectionGateway()

        broken = MagicMock()
        broken.send_json = AsyncMock(side_effect=RuntimeError("socket closed"))
        healthy = MagicMock()
        healthy.send_json = AsyncMock()

        broken_id = gateway.register(broken)
        healthy_id = gateway.register(healthy)

        delivered = asyncio.run(gateway.deliver([
            Delivery(broken_id, update),
            Delivery(healthy_id, update),
            Delivery("conn_unknown", update),
        ]))

        assert delivered == [healthy_id]
        healthy.send_json.assert_awaited_once_with(update_message(update))

    def test_update_message(self, update):
        message = update_message(update)

        assert message["type"] == "animation-update"
        assert message["sessionId"] == "session_x"
        assert message["frameId"] == update.frame_id
        assert message["expression"] == "neutral"
        assert message["transform"]["filter"] == "brightness(1.0) contrast(1.0)"
        assert message["transform"]["mouthCutout"] == {
            "visible": False,
            "width": 100.0,
            "height": 100.0,
            "curve": 0.0,
            "clipPath": "none",
        }


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
