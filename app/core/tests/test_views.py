"""
Tests for the process health check.
"""

from django.db import DatabaseError
from django.urls import reverse


class TestHealthCheck:
    def test_healthy(self, client, db):
        response = client.get(reverse("health_check"))

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "connected"}

    def test_database_unreachable(self, client, db, mocker):
        mocker.patch(
            "core.views.connection.cursor",
            side_effect=DatabaseError("connection refused"),
        )

        response = client.get(reverse("health_check"))

        assert response.status_code == 503
        assert response.json()["database"] == "disconnected"
