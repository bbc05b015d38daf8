"""
Tests for the medical profile endpoints.
"""
import pytest


PROFILE = {
    "fullName": "Sita Sharma",
    "dateOfBirth": "1990-04-12",
    "gender": "female",
    "bloodType": "O+",
    "allergies": "Penicillin",
    "chronicConditions": "Asthma",
    "emergencyContactName": "Ram Sharma",
    "emergencyContactPhone": "+977 (981) 111-2222",
}


class TestGetProfile:

    async def test_get_profile(self, async_client, auth_headers, registered_user):
        response = await async_client.get("/api/profile", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"] == registered_user["user"]["id"]
        assert data["profileComplete"] is False
        assert data["dateOfBirth"] is None


class TestUpdateProfile:

    async def test_update_completes_profile(self, async_client, auth_headers):
        response = await async_client.put("/api/profile", json=PROFILE, headers=auth_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["profileComplete"] is True
        assert data["dateOfBirth"] == "1990-04-12"
        assert data["bloodType"] == "O+"
        assert data["allergies"] == "Penicillin"
        assert data["emergencyContactPhone"] == "+977 (981) 111-2222"

        # Persisted
        response = await async_client.get("/api/profile", headers=auth_headers)
        assert response.json()["data"]["fullName"] == "Sita Sharma"
        assert response.json()["data"]["profileComplete"] is True

    async def test_update_clears_omitted_optional_fields(self, async_client, auth_headers):
        await async_client.put("/api/profile", json=PROFILE, headers=auth_headers)

        response = await async_client.put(
            "/api/profile",
            json={"fullName": "Sita Sharma", "dateOfBirth": "1990-04-12", "gender": "female"},
            headers=auth_headers,
        )

        data = response.json()["data"]
        assert data["allergies"] is None
        assert data["bloodType"] is None
        assert data["profileComplete"] is True

    @pytest.mark.parametrize("missing", ["fullName", "dateOfBirth", "gender"])
    async def test_required_fields(self, async_client, auth_headers, missing):
        payload = {key: value for key, value in PROFILE.items() if key != missing}

        response = await async_client.put("/api/profile", json=payload, headers=auth_headers)

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert missing in error["message"]

    @pytest.mark.parametrize(
        "field, value",
        [
            ("bloodType", "C+"),
            ("gender", "unknown"),
            ("dateOfBirth", "12/04/1990"),
            ("fullName", "   "),
        ],
    )
    async def test_invalid_values(self, async_client, auth_headers, field, value):
        response = await async_client.put(
            "/api/profile", json={**PROFILE, field: value}, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_invalid_emergency_contact_phone(self, async_client, auth_headers):
        response = await async_client.put(
            "/api/profile",
            json={**PROFILE, "emergencyContactPhone": "call me maybe"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert "Invalid phone number format" in response.json()["error"]["message"]

    async def test_requires_authentication(self, async_client):
        response = await async_client.put("/api/profile", json=PROFILE)

        assert response.status_code == 401
