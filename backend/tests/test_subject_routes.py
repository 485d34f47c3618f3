"""
Canopy Backend - Subject Endpoint Tests
=========================================

What we test:
    ✅ POST /api/subjects creates a subject with an empty history
    ✅ Create requires a project membership and a location
    ✅ GET can omit the history or keep a single year
    ✅ PUT changes descriptive fields and never the history
    ✅ DELETE is limited to the project owner or the creator
    ✅ GET /health reports the database and every response has X-Request-ID
"""

import pytest

from conftest import MEMBER, OUTSIDER, OWNER, PROJECT_ID, auth_headers

OTHER_MEMBER = "user:other"

NEW_SUBJECT = {
    "projectId": PROJECT_ID,
    "name": "Linden",
    "species": "Tilia cordata",
    "location": {"latitude": 45.76, "longitude": 4.83},
}


class TestCreateSubject:

    @pytest.mark.asyncio
    async def test_create(self, test_client):
        response = await test_client.post("/api/subjects", json=NEW_SUBJECT, headers=auth_headers(MEMBER))

        assert response.status_code == 201
        data = response.json()
        assert data["id"].startswith("subject:")
        assert data["history"] == {}
        assert data["createdBy"] == MEMBER
        assert data["health"] == "unknown"
        assert data["location"]["name"] == "Marked position"
        assert response.headers["ETag"] == data["revision"]

    @pytest.mark.asyncio
    async def test_defaults_for_missing_names(self, test_client):
        body = {"projectId": PROJECT_ID, "location": {"latitude": 1.0, "longitude": 2.0}}
        data = (await test_client.post("/api/subjects", json=body, headers=auth_headers(MEMBER))).json()

        assert data["name"] == "Unnamed subject"
        assert data["species"] == "Unknown species"

    @pytest.mark.asyncio
    async def test_location_required(self, test_client):
        body = {k: v for k, v in NEW_SUBJECT.items() if k != "location"}
        response = await test_client.post("/api/subjects", json=body, headers=auth_headers(MEMBER))

        assert response.status_code == 400
        assert response.json()["details"]["field"] == "location"

    @pytest.mark.asyncio
    async def test_project_required(self, test_client):
        body = {k: v for k, v in NEW_SUBJECT.items() if k != "projectId"}
        response = await test_client.post("/api/subjects", json=body, headers=auth_headers(MEMBER))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_project(self, test_client):
        body = {**NEW_SUBJECT, "projectId": "project:missing"}
        response = await test_client.post("/api/subjects", json=body, headers=auth_headers(MEMBER))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_outsider_cannot_create(self, test_client):
        response = await test_client.post("/api/subjects", json=NEW_SUBJECT, headers=auth_headers(OUTSIDER))
        assert response.status_code == 403


class TestReadSubject:

    async def seed_history(self, client, subject_id):
        for day in ("2023-05-01", "2024-05-01"):
            await client.post(
                f"/api/subjects/{subject_id}/history", json={"date": day}, headers=auth_headers(MEMBER)
            )

    @pytest.mark.asyncio
    async def test_get_with_history(self, test_client, subject):
        await self.seed_history(test_client, subject.id)

        response = await test_client.get(f"/api/subjects/{subject.id}", headers=auth_headers(MEMBER))

        assert response.status_code == 200
        assert sorted(response.json()["history"]) == ["2023", "2024"]
        assert response.headers["ETag"] == response.json()["revision"]

    @pytest.mark.asyncio
    async def test_get_without_history(self, test_client, subject):
        response = await test_client.get(
            f"/api/subjects/{subject.id}", params={"includeHistory": "false"}, headers=auth_headers(MEMBER)
        )

        assert response.status_code == 200
        assert "history" not in response.json()
        assert response.json()["name"] == "Old oak"

    @pytest.mark.asyncio
    async def test_get_single_year(self, test_client, subject):
        await self.seed_history(test_client, subject.id)

        response = await test_client.get(
            f"/api/subjects/{subject.id}", params={"year": "2023"}, headers=auth_headers(MEMBER)
        )
        assert list(response.json()["history"]) == ["2023"]

        response = await test_client.get(
            f"/api/subjects/{subject.id}", params={"year": "1999"}, headers=auth_headers(MEMBER)
        )
        assert response.json()["history"] == {}

    @pytest.mark.asyncio
    async def test_outsider_cannot_read(self, test_client, subject):
        response = await test_client.get(f"/api/subjects/{subject.id}", headers=auth_headers(OUTSIDER))
        assert response.status_code == 403


class TestUpdateSubject:

    @pytest.mark.asyncio
    async def test_update_fields_keeps_history(self, test_client, subject):
        await test_client.post(
            f"/api/subjects/{subject.id}/history", json={"date": "2024-05-01"}, headers=auth_headers(MEMBER)
        )

        response = await test_client.put(
            f"/api/subjects/{subject.id}",
            json={"name": "Great oak", "history": {}},
            headers=auth_headers(MEMBER),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Great oak"
        assert data["species"] == "Quercus robur"
        assert data["updatedBy"] == MEMBER
        assert list(data["history"]) == ["2024"]

    @pytest.mark.asyncio
    async def test_stale_if_match(self, test_client, subject):
        await test_client.put(
            f"/api/subjects/{subject.id}", json={"name": "A"}, headers=auth_headers(MEMBER)
        )
        response = await test_client.put(
            f"/api/subjects/{subject.id}",
            json={"name": "B"},
            headers={**auth_headers(MEMBER), "If-Match": subject.revision},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "revision_conflict"

    @pytest.mark.asyncio
    async def test_negative_height_rejected(self, test_client, subject):
        response = await test_client.put(
            f"/api/subjects/{subject.id}", json={"height": -1}, headers=auth_headers(MEMBER)
        )
        assert response.status_code == 400


class TestDeleteSubject:

    @pytest.mark.asyncio
    async def test_creator_can_delete(self, test_client, subject):
        response = await test_client.delete(f"/api/subjects/{subject.id}", headers=auth_headers(MEMBER))

        assert response.status_code == 204
        missing = await test_client.get(f"/api/subjects/{subject.id}", headers=auth_headers(MEMBER))
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_project_owner_can_delete(self, test_client, subject):
        response = await test_client.delete(f"/api/subjects/{subject.id}", headers=auth_headers(OWNER))
        assert response.status_code == 204

    @pytest.mark.asyncio
    async def test_other_member_cannot_delete(self, test_client, db_session, project, subject):
        project.members = [OWNER, MEMBER, OTHER_MEMBER]
        await db_session.commit()

        response = await test_client.delete(f"/api/subjects/{subject.id}", headers=auth_headers(OTHER_MEMBER))

        assert response.status_code == 403
        still_there = await test_client.get(f"/api/subjects/{subject.id}", headers=auth_headers(MEMBER))
        assert still_there.status_code == 200


class TestHealthAndRequestId:

    @pytest.mark.asyncio
    async def test_health(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["database"] == "connected"

    @pytest.mark.asyncio
    async def test_request_id_echoed_in_errors(self, test_client):
        response = await test_client.get(
            "/api/subjects/subject:missing",
            headers={**auth_headers(MEMBER), "X-Request-ID": "trace-42"},
        )

        assert response.status_code == 404
        assert response.headers["X-Request-ID"] == "trace-42"
        assert response.json()["request_id"] == "trace-42"
