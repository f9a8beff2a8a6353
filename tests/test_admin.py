"""
tests/test_admin.py -- Integration tests for /api/admin/*.

Coverage:
  - Dashboard: 401 anonymous, 403 below ADMIN, overview windows and
    recent activity reflect created records
  - Settings: defaults seeded on first read and grouped by key prefix;
    create (201 / duplicate 400 / type check 400); update (404 unknown,
    type check against the stored type); delete (missing key 400,
    unknown 404, 204)

The settings tests rely on the first GET seeding the defaults, so
TestSettings.test_defaults_seeded_and_grouped runs before anything writes
to the settings table in this module.
"""

from __future__ import annotations

from market.models import Transaction
from tests.helpers import ApiContext, make_collection, make_nft


class TestSettings:
    def test_defaults_seeded_and_grouped(self, api_client: ApiContext) -> None:
        resp = api_client.client.get("/api/admin/settings", headers=api_client.admin_headers)
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert len(data["settings"]) == 8
        assert data["grouped"]["platform"]["fee_percentage"] == 2.5
        assert data["grouped"]["platform"]["name"] == "Etheryte"
        assert data["grouped"]["features"]["enable_auctions"] is True
        assert data["grouped"]["security"]["session_timeout"] == 86400

    def test_settings_require_admin(self, api_client: ApiContext) -> None:
        assert api_client.client.get("/api/admin/settings").status_code == 401
        assert api_client.client.get("/api/admin/settings", headers=api_client.moderator_headers).status_code == 403

    def test_create_setting(self, api_client: ApiContext) -> None:
        body = {"key": "limits.max_upload_mb", "value": "50", "type": "number", "description": "Upload cap"}
        resp = api_client.client.post("/api/admin/settings", json=body, headers=api_client.admin_headers)
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        assert resp.json()["type"] == "number"

        dup = api_client.client.post("/api/admin/settings", json=body, headers=api_client.admin_headers)
        assert dup.status_code == 400
        assert dup.json()["error"]["code"] == "duplicate_key"

    def test_create_rejects_value_of_wrong_type(self, api_client: ApiContext) -> None:
        for body in (
            {"key": "limits.bad_number", "value": "fifty", "type": "number"},
            {"key": "limits.bad_json", "value": "{not json", "type": "json"},
        ):
            resp = api_client.client.post("/api/admin/settings", json=body, headers=api_client.admin_headers)
            assert resp.status_code == 400, f"Expected 400 for {body}, got {resp.status_code}"
            assert resp.json()["error"]["code"] == "invalid_value"

    def test_create_rejects_bad_key(self, api_client: ApiContext) -> None:
        body = {"key": "Has Spaces", "value": "x"}
        resp = api_client.client.post("/api/admin/settings", json=body, headers=api_client.admin_headers)
        assert resp.status_code == 400

    def test_update_setting(self, api_client: ApiContext) -> None:
        resp = api_client.client.put(
            "/api/admin/settings",
            json={"key": "platform.fee_percentage", "value": "3"},
            headers=api_client.admin_headers,
        )
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["value"] == "3"

        bad = api_client.client.put(
            "/api/admin/settings",
            json={"key": "platform.fee_percentage", "value": "three"},
            headers=api_client.admin_headers,
        )
        assert bad.status_code == 400

    def test_update_unknown_setting(self, api_client: ApiContext) -> None:
        resp = api_client.client.put(
            "/api/admin/settings", json={"key": "nope.missing", "value": "1"}, headers=api_client.admin_headers
        )
        assert resp.status_code == 404

    def test_delete_setting(self, api_client: ApiContext) -> None:
        api_client.client.post(
            "/api/admin/settings", json={"key": "tmp.flag", "value": "true", "type": "boolean"},
            headers=api_client.admin_headers,
        )
        missing = api_client.client.delete("/api/admin/settings", headers=api_client.admin_headers)
        assert missing.status_code == 400
        assert missing.json()["error"]["code"] == "missing_param"

        unknown = api_client.client.delete(
            "/api/admin/settings", params={"key": "tmp.unknown"}, headers=api_client.admin_headers
        )
        assert unknown.status_code == 404

        resp = api_client.client.delete("/api/admin/settings", params={"key": "tmp.flag"}, headers=api_client.admin_headers)
        assert resp.status_code == 204
        assert api_client.market.get_setting("tmp.flag") is None


class TestDashboard:
    def test_dashboard_requires_admin(self, api_client: ApiContext) -> None:
        assert api_client.client.get("/api/admin/dashboard").status_code == 401
        assert api_client.client.get("/api/admin/dashboard", headers=api_client.user_headers).status_code == 403

    def test_dashboard_shape_and_counts(self, api_client: ApiContext) -> None:
        creator, _ = api_client.new_user()
        collection = make_collection(api_client.market, creator)
        nft = make_nft(api_client.market, creator, collection_id=collection.id)
        api_client.market.create_transaction(
            Transaction(nft_id=nft.id, user_id=creator.id, amount=4.0, transaction_hash="0x" + "d" * 64, type="SALE")
        )

        resp = api_client.client.get("/api/admin/dashboard", headers=api_client.admin_headers)
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()

        overview = data["overview"]
        assert set(overview) == {"users", "nfts", "transactions", "volume", "auctions", "collections"}
        assert overview["users"]["total"] >= 4
        assert overview["users"]["today"] >= 4
        assert overview["volume"]["total"] >= 4.0
        assert overview["transactions"]["month"] >= 1

        recent = data["recent_activity"]
        assert any(t["transaction_hash"] == "0x" + "d" * 64 for t in recent["transactions"])
        assert any(n["id"] == nft.id for n in recent["nfts"])

        top_collections = data["top_performers"]["collections"]
        assert any(c["collection"]["id"] == collection.id and c["volume"] == 4.0 for c in top_collections)
        assert data["top_performers"]["creators"]

        assert data["system_health"]["database"] == "ok"
        assert data["system_health"]["active_sessions"] >= 3
