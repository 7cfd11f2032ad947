"""HTTP API tests."""

from httpx import AsyncClient

SUICIDAL_PLAN = {"suicidalIdeationNow": True, "suicidalIntentOrPlan": True}

COMPLETE_ROUTINE = {
    "weeksPostpartum": 5,
    "suicidalIdeationNow": False,
    "thoughtsOfHarmingBaby": False,
    "heavyBleedingEmergencyPattern": False,
    "depressedMoodMostDays": False,
    "functionalImpairmentMental": False,
}


async def evaluate_case(client: AsyncClient, body: dict) -> dict:
    """Evaluate answers through the API and return the response body."""
    response = await client.post("/api/v1/triage/evaluate", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    """Health endpoints."""

    async def test_health_check(self, client: AsyncClient) -> None:
        """Test health check endpoint returns ok status."""
        response = await client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_health_check_ready(self, client: AsyncClient) -> None:
        """Test readiness check endpoint returns ok status."""
        response = await client.get("/api/v1/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_root_endpoint(self, client: AsyncClient) -> None:
        """Test root endpoint returns service info."""
        response = await client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "Postpartum Triage API"
        assert "version" in data


class TestTriage:
    """Triage endpoints."""

    async def test_rules(self, client: AsyncClient) -> None:
        """Test the active ruleset summary."""
        response = await client.get("/api/v1/triage/rules")

        assert response.status_code == 200
        data = response.json()
        assert data["version"] == "1.0.0"
        assert data["emergency_number"] == "112"
        assert len(data["hash"]) == 64

    async def test_evaluate_flat_body(self, client: AsyncClient) -> None:
        """Test evaluation of answers sent on their own."""
        data = await evaluate_case(client, SUICIDAL_PLAN)

        assert data["case_id"]
        assert data["result"]["level"] == "EMERGENCY_NOW"
        assert data["result"]["action_plan"]["primary_route"] == "CALL_EMERGENCY_112"

    async def test_evaluate_with_audit_options(
        self, client: AsyncClient, auth_headers: dict
    ) -> None:
        """Test provenance options are recorded on the case."""
        data = await evaluate_case(
            client,
            {
                "input": COMPLETE_ROUTINE,
                "audit": {"source": "kiosk", "runId": "run-42", "includeInput": True},
            },
        )

        response = await client.get(f"/api/v1/cases/{data['case_id']}", headers=auth_headers)

        assert response.status_code == 200
        case = response.json()
        assert case["source"] == "kiosk"
        assert case["run_id"] == "run-42"
        assert case["input_snapshot"]["weeks_postpartum"] == 5
        assert len(case["input_digest_sha256"]) == 64
        assert case["decision"]["level"] == "ROUTINE_FOLLOW_UP"

    async def test_input_not_stored_by_default(
        self, client: AsyncClient, auth_headers: dict
    ) -> None:
        """Test that answers are only kept when asked for."""
        data = await evaluate_case(client, COMPLETE_ROUTINE)

        response = await client.get(f"/api/v1/cases/{data['case_id']}", headers=auth_headers)

        assert response.json()["input_snapshot"] is None
        assert response.json()["source"] == "api"

    async def test_evaluate_invalid_input(self, client: AsyncClient) -> None:
        """Test that malformed answers are rejected."""
        response = await client.post(
            "/api/v1/triage/evaluate", json={"weeksPostpartum": "soon"}
        )

        assert response.status_code == 422


class TestCases:
    """Case endpoints."""

    async def test_requires_authentication(self, client: AsyncClient) -> None:
        """Test that case endpoints need a bearer token."""
        response = await client.get("/api/v1/cases/recent")

        assert response.status_code == 401

    async def test_requires_staff(
        self, client: AsyncClient, patient_auth_headers: dict
    ) -> None:
        """Test that non-staff tokens are refused."""
        response = await client.get("/api/v1/cases/recent", headers=patient_auth_headers)

        assert response.status_code == 403

    async def test_invalid_token(self, client: AsyncClient) -> None:
        """Test that an unverifiable token is refused."""
        response = await client.get(
            "/api/v1/cases/recent", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401

    async def test_recent(self, client: AsyncClient, auth_headers: dict) -> None:
        """Test the recent case listing."""
        for _ in range(3):
            await evaluate_case(client, COMPLETE_ROUTINE)

        response = await client.get(
            "/api/v1/cases/recent", params={"limit": 2}, headers=auth_headers
        )

        assert response.status_code == 200
        assert len(response.json()) == 2

    async def test_unknown_case(self, client: AsyncClient, auth_headers: dict) -> None:
        """Test that an unknown case id is 404."""
        response = await client.get("/api/v1/cases/nope", headers=auth_headers)

        assert response.status_code == 404

    async def test_patch_outcome(self, client: AsyncClient, auth_headers: dict) -> None:
        """Test an outcome patch attributed to the token subject."""
        case_id = (await evaluate_case(client, COMPLETE_ROUTINE))["case_id"]

        response = await client.patch(
            f"/api/v1/cases/{case_id}/outcome",
            json={"care_sought": True, "care_time": 2, "care_type": "midwife"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["after"]["outcome"]["care_type"] == "MIDWIFE"
        assert data["change"]["editor"] == "nurse.kim@clinic.test"
        assert data["change"]["sequence"] == 1

    async def test_patch_outcome_invalid(self, client: AsyncClient, auth_headers: dict) -> None:
        """Test that an invalid patch is 422 and leaves no ledger entry."""
        case_id = (await evaluate_case(client, COMPLETE_ROUTINE))["case_id"]

        response = await client.patch(
            f"/api/v1/cases/{case_id}/outcome",
            json={"care_time": -1},
            headers=auth_headers,
        )

        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "care_time"

        history = await client.get(f"/api/v1/cases/{case_id}/changes", headers=auth_headers)
        assert history.json() == []

    async def test_patch_unknown_case(self, client: AsyncClient, auth_headers: dict) -> None:
        """Test that patching an unknown case is 404."""
        response = await client.patch(
            "/api/v1/cases/nope/workflow",
            json={"status": "CLOSED"},
            headers=auth_headers,
        )

        assert response.status_code == 404

    async def test_patch_workflow_and_verify(
        self, client: AsyncClient, auth_headers: dict
    ) -> None:
        """Test workflow patches, history and chain verification."""
        case_id = (await evaluate_case(client, COMPLETE_ROUTINE))["case_id"]

        for body in ({"status": "in_progress"}, {"owner": "midwife-team"}):
            response = await client.patch(
                f"/api/v1/cases/{case_id}/workflow", json=body, headers=auth_headers
            )
            assert response.status_code == 200

        history = await client.get(f"/api/v1/cases/{case_id}/changes", headers=auth_headers)
        verify = await client.get(
            f"/api/v1/cases/{case_id}/changes/verify", headers=auth_headers
        )

        assert [change["sequence"] for change in history.json()] == [1, 2]
        assert history.json()[1]["after"]["workflow"]["status"] == "IN_PROGRESS"
        assert verify.json() == {"case_id": case_id, "entries": 2, "valid": True}


class TestChanges:
    """Change ledger endpoints."""

    async def test_recent_changes(self, client: AsyncClient, auth_headers: dict) -> None:
        """Test the recent change listing."""
        case_id = (await evaluate_case(client, COMPLETE_ROUTINE))["case_id"]
        await client.patch(
            f"/api/v1/cases/{case_id}/outcome", json={"resolved": True}, headers=auth_headers
        )

        response = await client.get("/api/v1/changes/recent", headers=auth_headers)

        assert response.status_code == 200
        assert [change["case_id"] for change in response.json()] == [case_id]

    async def test_ledger_is_read_only(self, client: AsyncClient, auth_headers: dict) -> None:
        """Test that no write method exists on the ledger."""
        response = await client.post("/api/v1/changes/recent", json={}, headers=auth_headers)

        assert response.status_code == 405
