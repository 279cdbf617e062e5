"""Tests for the HTTP surface: routing, caller header and refusal mapping."""
import pytest

from tests.conftest import NOW, make_token_id

T1 = make_token_id("T1")


def as_principal(principal):
    return {"X-Principal": principal}


@pytest.fixture
def issued(client):
    """Admin 'admin' set; T1 issued to alice."""
    assert client.put("/api/admin", json={"admin": "admin"}, headers=as_principal("admin")).status_code == 204
    response = client.post(
        "/api/tokens",
        json={"id": T1, "owner": "alice", "expiry_date": NOW + 1000},
        headers=as_principal("admin")
    )
    assert response.status_code == 201
    return T1


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


class TestTokenEndpoints:

    def test_issue_and_get(self, client, issued):
        response = client.get(f"/api/tokens/{issued}")

        assert response.status_code == 200
        assert response.json() == {
            "id": issued,
            "owner": "alice",
            "status": "Active",
            "issue_date": NOW,
            "expiry_date": NOW + 1000,
        }

    def test_issue_without_admin(self, client):
        response = client.post(
            "/api/tokens",
            json={"id": T1, "owner": "alice", "expiry_date": NOW + 1000},
            headers=as_principal("admin")
        )

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "admin_not_set"

    def test_missing_caller_header(self, client, issued):
        response = client.post(f"/api/tokens/{issued}/transfer", json={"new_owner": "bob"})

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "unauthorized"

    def test_duplicate_issue(self, client, issued):
        response = client.post(
            "/api/tokens",
            json={"id": issued, "owner": "bob", "expiry_date": NOW + 1000},
            headers=as_principal("admin")
        )
        assert response.status_code == 409

    def test_past_expiry(self, client, issued):
        response = client.post(
            "/api/tokens",
            json={"id": make_token_id("T2"), "owner": "bob", "expiry_date": NOW},
            headers=as_principal("admin")
        )
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "invalid_expiry"

    def test_malformed_id_rejected_by_schema(self, client, issued):
        response = client.post(
            "/api/tokens",
            json={"id": "xyz", "owner": "bob", "expiry_date": NOW + 10},
            headers=as_principal("admin")
        )
        assert response.status_code == 422

    def test_expired_token_is_gone(self, client, issued, clock):
        clock.advance(1001)

        response = client.get(f"/api/tokens/{issued}")
        assert response.status_code == 410

    def test_transfer(self, client, issued):
        response = client.post(
            f"/api/tokens/{issued}/transfer", json={"new_owner": "bob"}, headers=as_principal("alice")
        )
        assert response.status_code == 200
        assert response.json()["owner"] == "bob"

        response = client.post(
            f"/api/tokens/{issued}/transfer", json={"new_owner": "alice"}, headers=as_principal("alice")
        )
        assert response.status_code == 403

    def test_unknown_token(self, client):
        assert client.get(f"/api/tokens/{make_token_id('nope')}").status_code == 404


class TestMetadataEndpoints:

    def test_metadata_lifecycle(self, client, issued):
        alice = as_principal("alice")

        response = client.get(f"/api/tokens/{issued}/metadata")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "metadata_not_found"

        response = client.put(
            f"/api/tokens/{issued}/metadata",
            json={"description": "desc", "attributes": {"tier": {"kind": "text", "value": "gold"}}},
            headers=alice
        )
        assert response.status_code == 200
        assert response.json()["version"] == 1

        response = client.patch(
            f"/api/tokens/{issued}/metadata",
            json={"updates": {"tier": {"kind": "text", "value": "silver"},
                              "level": {"kind": "number", "value": 5}}},
            headers=alice
        )
        assert response.status_code == 200
        assert response.json()["version"] == 2
        assert response.json()["attributes"]["level"] == {"kind": "number", "value": 5}

        response = client.post(
            f"/api/tokens/{issued}/metadata/remove", json={"keys": ["level", "ghost"]}, headers=alice
        )
        assert response.status_code == 200
        assert response.json()["attributes"] == {"tier": {"kind": "text", "value": "silver"}}

        history = client.get(f"/api/tokens/{issued}/metadata/history").json()
        assert [entry["action"] for entry in history] == ["set", "update", "remove"]
        assert history[2]["removed"] == ["level"]

    def test_update_before_set(self, client, issued):
        response = client.patch(
            f"/api/tokens/{issued}/metadata",
            json={"updates": {"tier": {"kind": "text", "value": "gold"}}},
            headers=as_principal("alice")
        )
        assert response.status_code == 404

    def test_validation_failure(self, client, issued):
        response = client.put(
            f"/api/tokens/{issued}/metadata",
            json={"description": "d", "attributes": {"tier": {"kind": "text", "value": "x" * 1000}}},
            headers=as_principal("alice")
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "validation_failed"

    def test_unknown_kind_rejected(self, client, issued):
        response = client.put(
            f"/api/tokens/{issued}/metadata",
            json={"description": "d", "attributes": {"tier": {"kind": "color", "value": "red"}}},
            headers=as_principal("alice")
        )
        assert response.status_code == 422


class TestQueryEndpoints:

    @pytest.fixture
    def tagged(self, client, issued):
        client.put(
            f"/api/tokens/{issued}/metadata",
            json={"description": "d", "attributes": {
                "tier": {"kind": "text", "value": "gold"},
                "level": {"kind": "number", "value": 5},
                "vip": {"kind": "boolean", "value": True},
            }},
            headers=as_principal("alice")
        )
        return issued

    def test_query_by_attribute(self, client, tagged):
        response = client.get("/api/attributes/tier/tokens", params={"kind": "text", "value": "gold"})
        assert response.json() == {"token_ids": [tagged]}

        response = client.get("/api/attributes/level/tokens", params={"kind": "number", "value": "5"})
        assert response.json() == {"token_ids": [tagged]}

        response = client.get("/api/attributes/level/tokens", params={"kind": "text", "value": "5"})
        assert response.json() == {"token_ids": []}

        response = client.get("/api/attributes/vip/tokens", params={"kind": "boolean", "value": "true"})
        assert response.json() == {"token_ids": [tagged]}

    def test_query_bad_value(self, client, tagged):
        response = client.get("/api/attributes/level/tokens", params={"kind": "number", "value": "five"})
        assert response.status_code == 422

        response = client.get("/api/attributes/level/tokens", params={"kind": "color", "value": "red"})
        assert response.status_code == 422

    def test_query_by_attributes(self, client, tagged):
        response = client.post("/api/tokens/query", json={"filters": {
            "tier": {"kind": "text", "value": "gold"},
            "vip": {"kind": "boolean", "value": False},
        }})
        assert response.json() == {"token_ids": []}

        response = client.post("/api/tokens/query", json={"filters": {
            "tier": {"kind": "text", "value": "gold"},
            "vip": {"kind": "boolean", "value": True},
        }})
        assert response.json() == {"token_ids": [tagged]}


def test_audit_events_listed(client, issued):
    events = client.get("/api/audit-events", params={"entity_id": issued}).json()

    assert [event["event_type"] for event in events] == ["token_issued"]
    assert events[0]["user_id"] == "admin"
