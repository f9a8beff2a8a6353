"""
tests/test_collections.py -- Integration tests for /api/collections.

Coverage:
  - Create: 201 with slug, 409 on duplicate name for the same creator,
    same name allowed for a different creator
  - List: price stats per collection, preview NFTs, filters
  - Detail: all NFTs plus sales stats
  - Update: creator/ADMIN only; is_verified needs MODERATOR+; rename conflict 409
  - Delete: non-empty collection 400; empty one 204
"""

from __future__ import annotations

from market.models import Transaction
from tests.helpers import ApiContext, make_collection, make_nft


class TestCreateCollection:
    def test_create_collection(self, api_client: ApiContext) -> None:
        creator, headers = api_client.new_user()
        resp = api_client.client.post(
            "/api/collections",
            json={"name": "Genesis Shapes!", "description": "First drop", "image": "https://images.etheryte.io/g.png"},
            headers=headers,
        )
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["slug"] == "genesis-shapes"
        assert data["creator_id"] == creator.id
        assert data["is_verified"] is False
        assert data["nft_count"] == 0

    def test_duplicate_name_same_creator_conflict(self, api_client: ApiContext) -> None:
        _, headers = api_client.new_user()
        first = api_client.client.post("/api/collections", json={"name": "Twins"}, headers=headers)
        assert first.status_code == 201
        second = api_client.client.post("/api/collections", json={"name": "Twins"}, headers=headers)
        assert second.status_code == 409, f"Expected 409, got {second.status_code}: {second.text}"

    def test_same_name_different_creator_allowed(self, api_client: ApiContext) -> None:
        _, headers_a = api_client.new_user()
        _, headers_b = api_client.new_user()
        assert api_client.client.post("/api/collections", json={"name": "Shared"}, headers=headers_a).status_code == 201
        assert api_client.client.post("/api/collections", json={"name": "Shared"}, headers=headers_b).status_code == 201

    def test_create_requires_auth(self, api_client: ApiContext) -> None:
        assert api_client.client.post("/api/collections", json={"name": "Anon"}).status_code == 401


class TestListAndDetail:
    def test_list_includes_price_stats_and_preview(self, api_client: ApiContext) -> None:
        creator, _ = api_client.new_user()
        collection = make_collection(api_client.market, creator)
        for price in (1.0, 2.0, 6.0):
            make_nft(api_client.market, creator, price=price, collection_id=collection.id)

        resp = api_client.client.get("/api/collections", params={"creator_id": creator.id})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        item = resp.json()["collections"][0]
        assert item["nft_count"] == 3
        assert item["stats"]["floor_price"] == 1.0
        assert item["stats"]["max_price"] == 6.0
        assert item["stats"]["average_price"] == 3.0
        assert item["stats"]["total_value"] == 9.0
        assert len(item["preview_nfts"]) == 3
        assert item["creator"]["id"] == creator.id

    def test_detail_with_sales(self, api_client: ApiContext) -> None:
        creator, _ = api_client.new_user()
        collection = make_collection(api_client.market, creator)
        nft = make_nft(api_client.market, creator, collection_id=collection.id)
        api_client.market.create_transaction(
            Transaction(nft_id=nft.id, user_id=creator.id, amount=2.5, transaction_hash="0x" + "c" * 64, type="SALE")
        )
        resp = api_client.client.get(f"/api/collections/{collection.id}")
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert [n["id"] for n in data["nfts"]] == [nft.id]
        assert data["collection"]["stats"]["total_sales"] == 1
        assert data["collection"]["stats"]["volume"] == 2.5

    def test_unknown_collection_404(self, api_client: ApiContext) -> None:
        assert api_client.client.get("/api/collections/999999").status_code == 404


class TestUpdateCollection:
    def test_creator_renames_and_slug_follows(self, api_client: ApiContext) -> None:
        creator, headers = api_client.new_user()
        collection = make_collection(api_client.market, creator)
        resp = api_client.client.put(
            f"/api/collections/{collection.id}", json={"name": "New Name"}, headers=headers
        )
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["slug"] == "new-name"

    def test_other_user_cannot_update(self, api_client: ApiContext) -> None:
        creator, _ = api_client.new_user()
        collection = make_collection(api_client.market, creator)
        resp = api_client.client.put(
            f"/api/collections/{collection.id}", json={"description": "mine now"}, headers=api_client.user_headers
        )
        assert resp.status_code == 403

    def test_creator_cannot_self_verify(self, api_client: ApiContext) -> None:
        creator, headers = api_client.new_user()
        collection = make_collection(api_client.market, creator)
        resp = api_client.client.put(f"/api/collections/{collection.id}", json={"is_verified": True}, headers=headers)
        assert resp.status_code == 403

    def test_moderator_cannot_verify_others_collection(self, api_client: ApiContext) -> None:
        creator, _ = api_client.new_user()
        collection = make_collection(api_client.market, creator)
        resp = api_client.client.put(
            f"/api/collections/{collection.id}", json={"is_verified": True}, headers=api_client.moderator_headers
        )
        assert resp.status_code == 403, f"Expected 403, got {resp.status_code}: {resp.text}"
        assert api_client.market.get_collection(collection.id).is_verified is False

    def test_moderator_verifies_own_collection(self, api_client: ApiContext) -> None:
        moderator, headers = api_client.new_user(role="MODERATOR")
        collection = make_collection(api_client.market, moderator)
        resp = api_client.client.put(f"/api/collections/{collection.id}", json={"is_verified": True}, headers=headers)
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["is_verified"] is True

    def test_admin_verifies(self, api_client: ApiContext) -> None:
        creator, _ = api_client.new_user()
        collection = make_collection(api_client.market, creator)
        resp = api_client.client.put(
            f"/api/collections/{collection.id}", json={"is_verified": True}, headers=api_client.admin_headers
        )
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["is_verified"] is True

    def test_rename_conflict(self, api_client: ApiContext) -> None:
        creator, headers = api_client.new_user()
        make_collection(api_client.market, creator, name="Taken")
        other = make_collection(api_client.market, creator, name="Free")
        resp = api_client.client.put(f"/api/collections/{other.id}", json={"name": "Taken"}, headers=headers)
        assert resp.status_code == 409


class TestDeleteCollection:
    def test_non_empty_collection_blocked(self, api_client: ApiContext) -> None:
        creator, headers = api_client.new_user()
        collection = make_collection(api_client.market, creator)
        make_nft(api_client.market, creator, collection_id=collection.id)
        resp = api_client.client.delete(f"/api/collections/{collection.id}", headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "collection_not_empty"

    def test_admin_deletes_empty_collection(self, api_client: ApiContext) -> None:
        creator, _ = api_client.new_user()
        collection = make_collection(api_client.market, creator)
        resp = api_client.client.delete(f"/api/collections/{collection.id}", headers=api_client.admin_headers)
        assert resp.status_code == 204
        assert api_client.market.get_collection(collection.id) is None
