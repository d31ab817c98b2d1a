"""Exchange entities and the AI fee results merged into them."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_fee(value: Any) -> Optional[float]:
    """Turn ``0.1``, ``"0.1"`` or ``"0.1%"`` into a float; anything else into None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.strip().rstrip("%").strip()
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def _coerce_fee_map(value: Any) -> Dict[str, float]:
    if not isinstance(value, dict):
        return {}
    fees: Dict[str, float] = {}
    for coin, amount in value.items():
        fee = coerce_fee(amount)
        if fee is not None:
            fees[str(coin)] = fee
    return fees


class FeeModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class GasEstimate(FeeModel):
    low: Optional[float] = None
    average: Optional[float] = None
    high: Optional[float] = None

    @field_validator("low", "average", "high", mode="before")
    @classmethod
    def _fee(cls, value: Any) -> Optional[float]:
        return coerce_fee(value)


def _coerce_gas_map(value: Any) -> Dict[str, Any]:
    if not isinstance(value, dict):
        return {}
    return {str(chain): estimate for chain, estimate in value.items() if isinstance(estimate, (dict, GasEstimate))}


# -----------------------------------------------------------------------------
# Entities
# -----------------------------------------------------------------------------


class CEXFees(FeeModel):
    """Centralized exchange. Fees are percentages (0.1 == 0.1%)."""

    ENRICHMENT_FIELDS: ClassVar[Tuple[str, ...]] = ("maker_fee", "taker_fee", "withdrawal_fees", "deposit_fees")

    exchange_id: str
    exchange_name: str
    logo: str = "/logos/default.svg"
    maker_fee: Optional[float] = None
    taker_fee: Optional[float] = None
    withdrawal_fees: Dict[str, float] = Field(default_factory=dict)
    deposit_fees: Dict[str, float] = Field(default_factory=dict)
    trust_score: float = 0
    volume24h: float = Field(0, alias="volume24h")  # USD
    year_established: Optional[int] = None
    country: str = "Unknown"
    url: str = ""
    last_updated: datetime = Field(default_factory=_utcnow)

    @property
    def entity_id(self) -> str:
        return self.exchange_id

    @property
    def display_name(self) -> str:
        return self.exchange_name

    @property
    def is_enhanced(self) -> bool:
        return self.maker_fee is not None or self.taker_fee is not None


class DEXFees(FeeModel):
    """Decentralized exchange / swap venue. Gas estimates are USD per chain."""

    ENRICHMENT_FIELDS: ClassVar[Tuple[str, ...]] = ("swap_fee", "gas_fee_estimate")

    dex_id: str
    dex_name: str
    logo: str = "/logos/default.svg"
    protocol: Literal["AMM", "Order Book", "Aggregator"] = "AMM"
    blockchain: List[str] = Field(default_factory=list)
    swap_fee: Optional[float] = None
    gas_fee_estimate: Dict[str, GasEstimate] = Field(default_factory=dict)
    liquidity_usd: float = Field(0, alias="liquidityUSD")
    volume24h: float = Field(0, alias="volume24h")
    url: str = ""
    last_updated: datetime = Field(default_factory=_utcnow)

    @property
    def entity_id(self) -> str:
        return self.dex_id

    @property
    def display_name(self) -> str:
        return self.dex_name

    @property
    def is_enhanced(self) -> bool:
        return self.swap_fee is not None


# -----------------------------------------------------------------------------
# AI results
# -----------------------------------------------------------------------------


class CEXFeeResult(FeeModel):
    exchange_id: str
    maker_fee: Optional[float] = None
    taker_fee: Optional[float] = None
    withdrawal_fees: Dict[str, float] = Field(default_factory=dict)
    deposit_fees: Dict[str, float] = Field(default_factory=dict)

    @field_validator("exchange_id", mode="before")
    @classmethod
    def _id(cls, value: Any) -> str:
        return str(value)

    @field_validator("maker_fee", "taker_fee", mode="before")
    @classmethod
    def _fee(cls, value: Any) -> Optional[float]:
        return coerce_fee(value)

    @field_validator("withdrawal_fees", "deposit_fees", mode="before")
    @classmethod
    def _fee_map(cls, value: Any) -> Dict[str, float]:
        return _coerce_fee_map(value)

    @property
    def entity_id(self) -> str:
        return self.exchange_id


class DEXFeeResult(FeeModel):
    dex_id: str
    swap_fee: Optional[float] = None
    gas_fee_estimate: Dict[str, GasEstimate] = Field(default_factory=dict)

    @field_validator("dex_id", mode="before")
    @classmethod
    def _id(cls, value: Any) -> str:
        return str(value)

    @field_validator("swap_fee", mode="before")
    @classmethod
    def _fee(cls, value: Any) -> Optional[float]:
        return coerce_fee(value)

    @field_validator("gas_fee_estimate", mode="before")
    @classmethod
    def _gas(cls, value: Any) -> Dict[str, Any]:
        return _coerce_gas_map(value)

    @property
    def entity_id(self) -> str:
        return self.dex_id
