"""Fee merge tests"""

from datetime import datetime, timezone

from app.schemas.fees import CEXFeeResult, CEXFees, DEXFeeResult, DEXFees, GasEstimate
from app.services.merge import count_enhanced, merge_batch, merge_entity

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
T1 = datetime(2024, 1, 2, tzinfo=timezone.utc)


def make_cex(exchange_id="binance", **kwargs):
    return CEXFees(
        exchange_id=exchange_id,
        exchange_name=exchange_id.title(),
        trust_score=10,
        volume24h=1_000_000,
        country="Malta",
        last_updated=T0,
        **kwargs,
    )


class TestMergeEntity:
    """Single entity merge"""

    def test_fills_enrichment_fields_only(self):
        entity = make_cex()
        result = CEXFeeResult(
            exchange_id="binance",
            maker_fee=0.1,
            taker_fee=0.1,
            withdrawal_fees={"BTC": 0.0005},
        )

        merged = merge_entity(entity, result, now=T1)

        assert merged.maker_fee == 0.1
        assert merged.withdrawal_fees == {"BTC": 0.0005}
        assert merged.exchange_name == "Binance"
        assert merged.trust_score == 10
        assert merged.volume24h == 1_000_000
        assert merged.country == "Malta"
        assert merged.last_updated == T1

    def test_null_and_empty_values_do_not_overwrite(self):
        entity = make_cex(maker_fee=0.2, deposit_fees={"ETH": 0.0})
        result = CEXFeeResult(exchange_id="binance", maker_fee=None, taker_fee=0.25, deposit_fees={})

        merged = merge_entity(entity, result, now=T1)

        assert merged.maker_fee == 0.2
        assert merged.taker_fee == 0.25
        assert merged.deposit_fees == {"ETH": 0.0}

    def test_merge_is_idempotent(self):
        entity = make_cex()
        result = CEXFeeResult(exchange_id="binance", maker_fee=0.1, taker_fee=0.1)

        once = merge_entity(entity, result, now=T1)
        twice = merge_entity(once, result, now=datetime(2024, 2, 1, tzinfo=timezone.utc))

        assert twice == once
        assert twice.last_updated == T1

    def test_unchanged_entity_keeps_timestamp(self):
        entity = make_cex()
        merged = merge_entity(entity, CEXFeeResult(exchange_id="binance"), now=T1)

        assert merged is entity
        assert merged.last_updated == T0

    def test_dex_gas_estimates(self):
        entity = DEXFees(dex_id="uniswap", dex_name="Uniswap", blockchain=["Ethereum"], last_updated=T0)
        result = DEXFeeResult(
            dex_id="uniswap",
            swap_fee="0.3%",
            gas_fee_estimate={"Ethereum": {"low": 1, "average": "2.5", "high": None}},
        )

        merged = merge_entity(entity, result, now=T1)

        assert merged.swap_fee == 0.3
        assert merged.gas_fee_estimate["Ethereum"] == GasEstimate(low=1.0, average=2.5, high=None)
        assert merged.is_enhanced is True


class TestMergeBatch:
    """Batch merge matched by id"""

    def test_matches_by_id_and_keeps_order(self):
        entities = [make_cex("a"), make_cex("b"), make_cex("c")]
        results = [
            CEXFeeResult(exchange_id="c", maker_fee=0.3),
            CEXFeeResult(exchange_id="a", maker_fee=0.1),
            CEXFeeResult(exchange_id="zzz", maker_fee=9.9),
        ]

        merged = merge_batch(entities, results, now=T1)

        assert [e.exchange_id for e in merged] == ["a", "b", "c"]
        assert [e.maker_fee for e in merged] == [0.1, None, 0.3]
        assert merged[1] is entities[1]
        assert count_enhanced(merged) == 2

    def test_empty_results(self):
        entities = [make_cex("a")]
        assert merge_batch(entities, []) == entities
