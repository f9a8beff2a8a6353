"""Unit tests for market/store.py -- MarketStore rules that live below the routes.

Covers:
- create_nft() generates token_id and contract_address
- place_bid() raises BidTooLow when the price has already moved
- create_auction() unlists the NFT
- create_transaction() side effects per type; duplicate hash raises
- collection_price_stats() / collection_sales() aggregates
- delete_collection() leaves its NFTs in place with collection_id cleared
- setting_value() decoding and ensure_default_settings() idempotence
- list_nfts() / list_collections() text search treats % and _ literally
- slugify()
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from market.models import Auction, SystemSetting, Transaction
from market.store import DEFAULT_SETTINGS, BidTooLow, setting_value, slugify
from tests.helpers import make_collection, make_nft, make_user


def _auction(nft_id: int, price: float = 1.0) -> Auction:
    now = datetime.now(timezone.utc)
    return Auction(
        nft_id=nft_id,
        starting_price=price,
        current_price=price,
        start_time=now.isoformat(),
        end_time=(now + timedelta(hours=24)).isoformat(),
    )


def _tx(nft_id: int, user_id: int, tx_type: str, amount: float = 1.0, fill: str = "a") -> Transaction:
    return Transaction(nft_id=nft_id, user_id=user_id, amount=amount, transaction_hash="0x" + fill * 64, type=tx_type)


class TestNFTs:
    def test_generated_identifiers(self, stores):
        user_store, market = stores
        creator = make_user(user_store)
        first = make_nft(market, creator)
        second = make_nft(market, creator)
        assert first.token_id and first.token_id != second.token_id
        assert first.contract_address.startswith("0x")
        assert first.is_listed is True
        assert first.is_sold is False

    def test_query_wildcards_match_literally(self, stores):
        user_store, market = stores
        creator = make_user(user_store)
        make_nft(market, creator, name="Plain Token")
        discount = make_nft(market, creator, name="100% Pure")
        snake = make_nft(market, creator, name="snake_case")
        make_nft(market, creator, name="snakeXcase")
        assert [n.id for n in market.list_nfts(query="%")[0]] == [discount.id]
        assert [n.id for n in market.list_nfts(query="e_c")[0]] == [snake.id]


class TestAuctions:
    def test_create_auction_unlists_nft(self, stores):
        user_store, market = stores
        seller = make_user(user_store)
        nft = make_nft(market, seller)
        auction_id = market.create_auction(_auction(nft.id))
        assert market.get_nft(nft.id).is_listed is False
        assert [a.id for a in market.active_auctions_for_nft(nft.id)] == [auction_id]

    def test_place_bid_raises_price(self, stores):
        user_store, market = stores
        seller, bidder = make_user(user_store), make_user(user_store)
        auction_id = market.create_auction(_auction(make_nft(market, seller).id))

        bid = market.place_bid(auction_id, bidder.id, 2.0)
        assert bid.id is not None
        assert market.get_auction(auction_id).current_price == 2.0
        assert market.highest_bid(auction_id).id == bid.id
        assert market.bid_counts([auction_id]) == {auction_id: 1}

    def test_stale_bid_raises_bid_too_low(self, stores):
        user_store, market = stores
        seller, first, second = make_user(user_store), make_user(user_store), make_user(user_store)
        auction_id = market.create_auction(_auction(make_nft(market, seller).id))

        market.place_bid(auction_id, first.id, 3.0)
        # Same amount as the winning bid: the conditional UPDATE matches nothing.
        with pytest.raises(BidTooLow):
            market.place_bid(auction_id, second.id, 3.0)
        assert len(market.list_bids(auction_id)) == 1

    def test_count_active_auctions_for_owner(self, stores):
        user_store, market = stores
        seller = make_user(user_store)
        market.create_auction(_auction(make_nft(market, seller).id))
        assert market.count_active_auctions_for_owner(seller.id) == 1
        assert market.count_auctions(active_only=True) == 1


class TestTransactions:
    @pytest.mark.parametrize(
        "tx_type,listed,sold",
        [("SALE", False, True), ("TRANSFER", False, False), ("MINT", True, False), ("AUCTION", True, False)],
    )
    def test_side_effects_by_type(self, stores, tx_type, listed, sold):
        user_store, market = stores
        owner = make_user(user_store)
        nft = make_nft(market, owner)
        market.create_transaction(_tx(nft.id, owner.id, tx_type))
        stored = market.get_nft(nft.id)
        assert stored.is_listed is listed
        assert stored.is_sold is sold

    def test_duplicate_hash_raises_and_rolls_back(self, stores):
        user_store, market = stores
        owner = make_user(user_store)
        nft = make_nft(market, owner)
        other = make_nft(market, owner)
        market.create_transaction(_tx(nft.id, owner.id, "MINT"))
        with pytest.raises(IntegrityError):
            market.create_transaction(_tx(other.id, owner.id, "SALE"))
        assert market.get_nft(other.id).is_sold is False

    def test_volume_counts_sales_and_auctions_only(self, stores):
        user_store, market = stores
        owner = make_user(user_store)
        nft = make_nft(market, owner)
        market.create_transaction(_tx(nft.id, owner.id, "SALE", 2.0, "a"))
        market.create_transaction(_tx(nft.id, owner.id, "AUCTION", 1.5, "b"))
        market.create_transaction(_tx(nft.id, owner.id, "TRANSFER", 9.0, "c"))
        assert market.total_volume() == 3.5
        assert market.total_volume(user_id=owner.id) == 3.5
        assert market.count_transactions(user_id=owner.id) == 3


class TestCollections:
    def test_price_stats_and_sales(self, stores):
        user_store, market = stores
        creator = make_user(user_store)
        collection = make_collection(market, creator)
        empty = make_collection(market, creator)
        cheap = make_nft(market, creator, price=1.0, collection_id=collection.id)
        make_nft(market, creator, price=3.0, collection_id=collection.id)
        market.create_transaction(_tx(cheap.id, creator.id, "SALE", 1.0))

        stats = market.collection_price_stats([collection.id, empty.id])
        assert stats[collection.id] == {
            "nft_count": 2,
            "floor_price": 1.0,
            "average_price": 2.0,
            "max_price": 3.0,
            "total_value": 4.0,
        }
        assert stats[empty.id]["nft_count"] == 0
        assert market.collection_sales(collection.id) == {"total_sales": 1, "volume": 1.0}

    def test_unique_name_per_creator(self, stores):
        user_store, market = stores
        creator, other = make_user(user_store), make_user(user_store)
        make_collection(market, creator, name="Dupes")
        make_collection(market, other, name="Dupes")
        with pytest.raises(IntegrityError):
            make_collection(market, creator, name="Dupes")

    def test_delete_clears_collection_on_nfts(self, stores):
        user_store, market = stores
        creator = make_user(user_store)
        collection = make_collection(market, creator)
        nft = make_nft(market, creator, collection_id=collection.id)
        assert market.delete_collection(collection.id) is True
        assert market.get_nft(nft.id).collection_id is None

    def test_query_underscore_is_literal(self, stores):
        user_store, market = stores
        creator = make_user(user_store)
        literal = make_collection(market, creator, name="Half_Price")
        make_collection(market, creator, name="HalfXPrice")
        found, total = market.list_collections(query="f_p")
        assert total == 1
        assert [c.id for c in found] == [literal.id]


class TestSettings:
    def test_defaults_seeded_once(self, stores):
        _, market = stores
        assert market.ensure_default_settings() == len(DEFAULT_SETTINGS)
        assert market.ensure_default_settings() == 0
        assert len(market.list_settings()) == len(DEFAULT_SETTINGS)

    @pytest.mark.parametrize(
        "value,value_type,expected",
        [
            ("2.5", "number", 2.5),
            ("10", "number", 10),
            ("true", "boolean", True),
            ("off", "boolean", False),
            ('{"a": [1, 2]}', "json", {"a": [1, 2]}),
            ("plain", "string", "plain"),
        ],
    )
    def test_setting_value(self, value, value_type, expected):
        assert setting_value(SystemSetting(key="k", value=value, type=value_type)) == expected

    def test_setting_value_rejects_bad_number(self):
        with pytest.raises(ValueError):
            setting_value(SystemSetting(key="k", value="lots", type="number"))


@pytest.mark.parametrize(
    "name,expected",
    [("Genesis Shapes!", "genesis-shapes"), ("  Neon -- Nights  ", "neon-nights"), ("Cafe 2024", "cafe-2024")],
)
def test_slugify(name, expected):
    assert slugify(name) == expected


def test_slugify_falls_back_to_random_token():
    slug = slugify("!!!")
    assert len(slug) == 8
    assert slug != slugify("!!!")
