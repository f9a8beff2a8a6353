"""
tests/test_users.py -- Integration tests for /api/users.

Coverage:
  - List: ADMIN only, role / verification breakdowns
  - Profile: public, activity stats, 404 for unknown id
  - Update: self profile fields; admin-only fields 403 for users;
    admin suspends a user and their sessions stop working
  - [M4] self-lockout guard for admins
  - Delete: self delete, other users 403, active auctions block deletion,
    the last active ADMIN cannot be deleted
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from market.models import Auction
from tests.helpers import ApiContext, make_collection, make_nft


class TestListUsers:
    def test_admin_lists_users_with_stats(self, api_client: ApiContext) -> None:
        resp = api_client.client.get("/api/users", headers=api_client.admin_headers)
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["pagination"]["total"] >= 3
        assert data["stats"]["by_role"]["ADMIN"] >= 1
        assert data["stats"]["by_role"]["MODERATOR"] >= 1
        assert set(data["stats"]["by_verification"]) == {"verified", "unverified"}
        assert all("hashed_password" not in u for u in data["users"])

    def test_filter_by_role_and_search(self, api_client: ApiContext) -> None:
        resp = api_client.client.get(
            "/api/users", params={"role": "MODERATOR", "search": "testmod"}, headers=api_client.admin_headers
        )
        usernames = [u["username"] for u in resp.json()["users"]]
        assert usernames == ["testmod"]

    def test_user_cannot_list(self, api_client: ApiContext) -> None:
        assert api_client.client.get("/api/users", headers=api_client.user_headers).status_code == 403

    def test_moderator_cannot_list(self, api_client: ApiContext) -> None:
        assert api_client.client.get("/api/users", headers=api_client.moderator_headers).status_code == 403

    def test_anonymous_cannot_list(self, api_client: ApiContext) -> None:
        assert api_client.client.get("/api/users").status_code == 401


class TestProfile:
    def test_public_profile_with_stats(self, api_client: ApiContext) -> None:
        creator, _ = api_client.new_user()
        make_nft(api_client.market, creator)
        make_nft(api_client.market, creator, is_listed=False)
        make_collection(api_client.market, creator)

        resp = api_client.client.get(f"/api/users/{creator.id}")
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert "email" not in data["user"]
        assert data["stats"]["nfts_created"] == 2
        assert data["stats"]["nfts_owned"] == 2
        assert data["stats"]["collections"] == 1
        assert len(data["recent_nfts"]) == 1, "only listed NFTs appear on the profile"

    def test_unknown_user_404(self, api_client: ApiContext) -> None:
        assert api_client.client.get("/api/users/999999").status_code == 404


class TestUpdateUser:
    def test_self_update_profile(self, api_client: ApiContext) -> None:
        user, headers = api_client.new_user()
        resp = api_client.client.put(
            f"/api/users/{user.id}",
            json={"first_name": "Ada", "bio": "Collector", "avatar": "https://images.etheryte.io/ada.png"},
            headers=headers,
        )
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["first_name"] == "Ada"
        assert data["avatar"] == "https://images.etheryte.io/ada.png"

    def test_user_cannot_change_own_role(self, api_client: ApiContext) -> None:
        user, headers = api_client.new_user()
        resp = api_client.client.put(f"/api/users/{user.id}", json={"role": "ADMIN"}, headers=headers)
        assert resp.status_code == 403
        assert api_client.user_store.get_by_id(user.id).role == "USER"

    def test_user_cannot_update_someone_else(self, api_client: ApiContext) -> None:
        other, _ = api_client.new_user()
        resp = api_client.client.put(f"/api/users/{other.id}", json={"bio": "hi"}, headers=api_client.user_headers)
        assert resp.status_code == 403

    def test_empty_update_is_400(self, api_client: ApiContext) -> None:
        user, headers = api_client.new_user()
        assert api_client.client.put(f"/api/users/{user.id}", json={}, headers=headers).status_code == 400

    def test_admin_suspension_kills_sessions(self, api_client: ApiContext) -> None:
        user, headers = api_client.new_user()
        assert api_client.client.get("/api/auth/me", headers=headers).status_code == 200

        resp = api_client.client.put(
            f"/api/users/{user.id}", json={"is_suspended": True}, headers=api_client.admin_headers
        )
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["is_suspended"] is True
        assert api_client.user_store.list_sessions(user.id) == []
        assert api_client.client.get("/api/auth/me", headers=headers).status_code == 401

    def test_admin_promotes_user(self, api_client: ApiContext) -> None:
        user, _ = api_client.new_user()
        resp = api_client.client.put(f"/api/users/{user.id}", json={"role": "MODERATOR"}, headers=api_client.admin_headers)
        assert resp.status_code == 200
        assert resp.json()["role"] == "MODERATOR"

    def test_admin_cannot_demote_self(self, api_client: ApiContext) -> None:
        admin, headers = api_client.new_user(role="ADMIN")
        resp = api_client.client.put(f"/api/users/{admin.id}", json={"role": "USER"}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "self_lockout"

    def test_admin_cannot_suspend_self(self, api_client: ApiContext) -> None:
        admin, headers = api_client.new_user(role="ADMIN")
        resp = api_client.client.put(f"/api/users/{admin.id}", json={"is_suspended": True}, headers=headers)
        assert resp.status_code == 400


class TestDeleteUser:
    def test_self_delete(self, api_client: ApiContext) -> None:
        user, headers = api_client.new_user()
        make_nft(api_client.market, user)
        resp = api_client.client.delete(f"/api/users/{user.id}", headers=headers)
        assert resp.status_code == 204, f"Expected 204, got {resp.status_code}: {resp.text}"
        assert api_client.user_store.get_by_id(user.id) is None
        assert api_client.client.get(f"/api/users/{user.id}").status_code == 404

    def test_cannot_delete_someone_else(self, api_client: ApiContext) -> None:
        other, _ = api_client.new_user()
        assert api_client.client.delete(f"/api/users/{other.id}", headers=api_client.user_headers).status_code == 403

    def test_active_auction_blocks_delete(self, api_client: ApiContext) -> None:
        seller, headers = api_client.new_user()
        nft = make_nft(api_client.market, seller)
        now = datetime.now(timezone.utc)
        api_client.market.create_auction(
            Auction(
                nft_id=nft.id,
                starting_price=1.0,
                current_price=1.0,
                start_time=now.isoformat(),
                end_time=(now + timedelta(hours=1)).isoformat(),
            )
        )
        resp = api_client.client.delete(f"/api/users/{seller.id}", headers=api_client.admin_headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "active_auctions"
        assert api_client.user_store.get_by_id(seller.id) is not None

    def test_last_active_admin_cannot_be_deleted(self, api_client: ApiContext) -> None:
        store = api_client.user_store
        admins, _ = store.list_users(role="ADMIN", limit=100)
        for other in admins:
            if other.id != api_client.admin.id:
                store.update_user(other.id, is_active=False)
        assert store.count_active_admins() == 1

        resp = api_client.client.delete(f"/api/users/{api_client.admin.id}", headers=api_client.admin_headers)
        assert resp.status_code == 400, f"Expected 400, got {resp.status_code}: {resp.text}"
        assert resp.json()["error"]["code"] == "last_admin"
        assert store.get_by_id(api_client.admin.id) is not None
