"""Test the health responder."""

from fastapi.testclient import TestClient

from health_responder.server import app

client = TestClient(app)


class TestHealthResponder:
    """Test the fixed health response."""

    def test_root(self):
        """Test that the root path answers ok as plain text."""
        response = client.get("/")

        assert response.status_code == 200
        assert response.text == "ok"
        assert response.headers["content-type"].startswith("text/plain")

    def test_health_path(self):
        """Test that any path answers ok."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.text == "ok"

    def test_answers_repeatedly(self):
        """Test that the answer never changes."""
        assert {client.get("/").text for _ in range(5)} == {"ok"}
