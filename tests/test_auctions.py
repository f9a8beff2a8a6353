"""
tests/test_auctions.py -- Integration tests for /api/auctions and bidding.

Coverage:
  - Create: owner only (403), unknown NFT (404), second active auction (409),
    reserve below start / duration out of range (400), NFT unlisted on success
  - Bids: every rejection rule, price raise on success, bid history order
  - List: NFT, top bids and bid count per auction
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from market.models import Auction
from tests.helpers import ApiContext, make_nft


def _start(api_client: ApiContext, headers: dict, nft_id: int, **overrides):
    body = {"nft_id": nft_id, "starting_price": 1.0, "duration_hours": 24, **overrides}
    return api_client.client.post("/api/auctions", json=body, headers=headers)


def _auction_for(api_client: ApiContext):
    """Create a seller with a running auction. Returns (seller, seller_headers, auction_id, nft)."""
    seller, headers = api_client.new_user()
    nft = make_nft(api_client.market, seller)
    resp = _start(api_client, headers, nft.id)
    assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
    return seller, headers, resp.json()["id"], nft


class TestCreateAuction:
    def test_owner_starts_auction(self, api_client: ApiContext) -> None:
        seller, headers = api_client.new_user()
        nft = make_nft(api_client.market, seller)
        resp = _start(api_client, headers, nft.id, starting_price=2.0, reserve_price=3.0, duration_hours=48)
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["current_price"] == 2.0
        assert data["reserve_price"] == 3.0
        assert data["is_active"] is True
        start = datetime.fromisoformat(data["start_time"])
        end = datetime.fromisoformat(data["end_time"])
        assert end - start == timedelta(hours=48)
        assert api_client.market.get_nft(nft.id).is_listed is False

    def test_non_owner_forbidden(self, api_client: ApiContext) -> None:
        seller, _ = api_client.new_user()
        nft = make_nft(api_client.market, seller)
        assert _start(api_client, api_client.user_headers, nft.id).status_code == 403

    def test_unknown_nft(self, api_client: ApiContext) -> None:
        assert _start(api_client, api_client.user_headers, 999999).status_code == 404

    def test_second_active_auction_conflict(self, api_client: ApiContext) -> None:
        seller, headers = api_client.new_user()
        nft = make_nft(api_client.market, seller)
        assert _start(api_client, headers, nft.id).status_code == 201
        assert _start(api_client, headers, nft.id).status_code == 409

    def test_invalid_bodies(self, api_client: ApiContext) -> None:
        seller, headers = api_client.new_user()
        nft = make_nft(api_client.market, seller)
        assert _start(api_client, headers, nft.id, reserve_price=0.5).status_code == 400
        assert _start(api_client, headers, nft.id, duration_hours=0).status_code == 400
        assert _start(api_client, headers, nft.id, duration_hours=169).status_code == 400
        assert _start(api_client, headers, nft.id, starting_price=0).status_code == 400


class TestBidding:
    def test_successful_bid_raises_price(self, api_client: ApiContext) -> None:
        _, _, auction_id, _ = _auction_for(api_client)
        resp = api_client.client.post(
            f"/api/auctions/{auction_id}/bids", json={"amount": 1.5}, headers=api_client.user_headers
        )
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        assert resp.json()["bidder_id"] == api_client.user.id
        assert api_client.market.get_auction(auction_id).current_price == 1.5

    def test_bid_must_exceed_current_price(self, api_client: ApiContext) -> None:
        _, _, auction_id, _ = _auction_for(api_client)
        for amount in (0.5, 1.0):
            resp = api_client.client.post(
                f"/api/auctions/{auction_id}/bids", json={"amount": amount}, headers=api_client.user_headers
            )
            assert resp.status_code == 400, f"Expected 400 for {amount}, got {resp.status_code}"
            assert resp.json()["error"]["code"] == "bid_too_low"

    def test_seller_cannot_bid(self, api_client: ApiContext) -> None:
        _, headers, auction_id, _ = _auction_for(api_client)
        resp = api_client.client.post(f"/api/auctions/{auction_id}/bids", json={"amount": 5.0}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "own_nft"

    def test_highest_bidder_cannot_outbid_self(self, api_client: ApiContext) -> None:
        _, _, auction_id, _ = _auction_for(api_client)
        url = f"/api/auctions/{auction_id}/bids"
        assert api_client.client.post(url, json={"amount": 2.0}, headers=api_client.user_headers).status_code == 201
        resp = api_client.client.post(url, json={"amount": 3.0}, headers=api_client.user_headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "already_highest"

    def test_outbid_by_another_user(self, api_client: ApiContext) -> None:
        _, _, auction_id, _ = _auction_for(api_client)
        url = f"/api/auctions/{auction_id}/bids"
        _, rival_headers = api_client.new_user()
        assert api_client.client.post(url, json={"amount": 2.0}, headers=api_client.user_headers).status_code == 201
        assert api_client.client.post(url, json={"amount": 2.5}, headers=rival_headers).status_code == 201

        resp = api_client.client.get(url)
        assert resp.status_code == 200
        data = resp.json()
        assert [b["amount"] for b in data["bids"]] == [2.5, 2.0]
        assert data["total_bids"] == 2
        assert data["highest_bid"]["amount"] == 2.5
        assert data["auction"]["current_price"] == 2.5

    def test_unknown_auction(self, api_client: ApiContext) -> None:
        resp = api_client.client.post("/api/auctions/999999/bids", json={"amount": 5.0}, headers=api_client.user_headers)
        assert resp.status_code == 404
        assert api_client.client.get("/api/auctions/999999/bids").status_code == 404

    def test_ended_auction(self, api_client: ApiContext) -> None:
        seller, _ = api_client.new_user()
        nft = make_nft(api_client.market, seller)
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        auction_id = api_client.market.create_auction(
            Auction(
                nft_id=nft.id,
                starting_price=1.0,
                current_price=1.0,
                start_time=past.isoformat(),
                end_time=(past + timedelta(hours=1)).isoformat(),
            )
        )
        resp = api_client.client.post(
            f"/api/auctions/{auction_id}/bids", json={"amount": 5.0}, headers=api_client.user_headers
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "auction_ended"

    def test_inactive_auction(self, api_client: ApiContext) -> None:
        seller, _ = api_client.new_user()
        nft = make_nft(api_client.market, seller)
        now = datetime.now(timezone.utc)
        auction_id = api_client.market.create_auction(
            Auction(
                nft_id=nft.id,
                starting_price=1.0,
                current_price=1.0,
                start_time=now.isoformat(),
                end_time=(now + timedelta(hours=1)).isoformat(),
                is_active=False,
            )
        )
        resp = api_client.client.post(
            f"/api/auctions/{auction_id}/bids", json={"amount": 5.0}, headers=api_client.user_headers
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "auction_inactive"

    def test_bid_requires_auth(self, api_client: ApiContext) -> None:
        _, _, auction_id, _ = _auction_for(api_client)
        assert api_client.client.post(f"/api/auctions/{auction_id}/bids", json={"amount": 5.0}).status_code == 401


class TestListAuctions:
    def test_list_carries_nft_and_bids(self, api_client: ApiContext) -> None:
        seller, _, auction_id, nft = _auction_for(api_client)
        api_client.client.post(f"/api/auctions/{auction_id}/bids", json={"amount": 4.0}, headers=api_client.user_headers)

        resp = api_client.client.get("/api/auctions", params={"creator_id": seller.id, "is_active": True})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        items = resp.json()["auctions"]
        assert len(items) == 1
        assert items[0]["nft"]["id"] == nft.id
        assert items[0]["bid_count"] == 1
        assert items[0]["bids"][0]["amount"] == 4.0
        assert items[0]["current_price"] == 4.0
