# solana_token_cache_bundle/token_cache/models.py
"""
Typed records for everything that crosses the enrichment boundary.

Upstream payloads (DexScreener profiles/pairs, Helius metadata/supply) are
parsed into these dataclasses as soon as they arrive. Snapshots are stored as
plain JSON using the camelCase keys of `to_dict()`.

Default-value policy
--------------------
* name   -> "Unknown" when neither the market pair nor metadata provides one
* ticker -> "N/A"     likewise
* numeric market fields -> 0.0 when missing, non-numeric or negative
* decimals -> 9 when supply is unavailable
* failed tokens -> name "Error", ticker "ERR", zeros, success=False, filtered=True
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .utils_exec import to_non_negative_float

UNKNOWN_NAME = "Unknown"
UNKNOWN_TICKER = "N/A"
ERROR_NAME = "Error"
ERROR_TICKER = "ERR"
DEFAULT_DECIMALS = 9


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _str_or_none(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


@dataclass(frozen=True)
class RawTokenRecord:
    address: str
    url: Optional[str] = None
    icon: Optional[str] = None
    header: Optional[str] = None
    description: Optional[str] = None
    links: List[Dict[str, Any]] = field(default_factory=list)
    chain_id: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: Dict[str, Any]) -> Optional["RawTokenRecord"]:
        """Parse one DexScreener token-profile object; None when it has no address."""
        if not isinstance(profile, dict):
            return None
        address = _str_or_none(profile.get("tokenAddress") or profile.get("address"))
        if not address:
            return None
        links = profile.get("links") or []
        return cls(
            address=address,
            url=_str_or_none(profile.get("url")),
            icon=_str_or_none(profile.get("icon")),
            header=_str_or_none(profile.get("header")),
            description=profile.get("description") if isinstance(profile.get("description"), str) else None,
            links=[dict(link) for link in links if isinstance(link, dict)],
            chain_id=_str_or_none(profile.get("chainId")),
        )

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RawTokenRecord":
        return cls(
            address=str(d["address"]),
            url=d.get("url"),
            icon=d.get("icon"),
            header=d.get("header"),
            description=d.get("description"),
            links=list(d.get("links") or []),
            chain_id=d.get("chainId"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "chainId": self.chain_id,
            "url": self.url,
            "icon": self.icon,
            "header": self.header,
            "description": self.description,
            "links": list(self.links),
        }


@dataclass(frozen=True)
class TokenMetadata:
    name: Optional[str] = None
    symbol: Optional[str] = None
    mintable: bool = False
    freezable: bool = False

    @classmethod
    def from_helius(cls, item: Any) -> Optional["TokenMetadata"]:
        """Parse one entry of the Helius /token-metadata response."""
        if not isinstance(item, dict):
            return None
        info = (
            ((((item.get("onChainAccountInfo") or {}).get("accountInfo") or {}).get("data") or {})
             .get("parsed") or {}).get("info") or {}
        )
        on_chain = ((item.get("onChainMetadata") or {}).get("metadata") or {}).get("data") or {}
        legacy = item.get("legacyMetadata") or {}
        return cls(
            name=_str_or_none(on_chain.get("name")) or _str_or_none(legacy.get("name")),
            symbol=_str_or_none(on_chain.get("symbol")) or _str_or_none(legacy.get("symbol")),
            mintable=bool(_str_or_none(info.get("mintAuthority"))),
            freezable=bool(_str_or_none(info.get("freezeAuthority"))),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "symbol": self.symbol, "mintable": self.mintable, "freezable": self.freezable}


@dataclass(frozen=True)
class TokenSupply:
    amount: int
    decimals: int = DEFAULT_DECIMALS

    @classmethod
    def from_rpc_result(cls, result: Any) -> Optional["TokenSupply"]:
        """Parse `getTokenSupply` result (`{"value": {"amount": "...", "decimals": n}}`)."""
        if not isinstance(result, dict):
            return None
        value = result.get("value") if isinstance(result.get("value"), dict) else result
        raw_amount = value.get("amount")
        if raw_amount in (None, ""):
            return None
        try:
            amount = int(str(raw_amount))
            decimals = int(value.get("decimals", DEFAULT_DECIMALS))
        except (TypeError, ValueError):
            return None
        if amount < 0 or decimals < 0:
            return None
        return cls(amount=amount, decimals=decimals)

    @property
    def ui_amount(self) -> float:
        return self.amount / (10 ** self.decimals)


@dataclass(frozen=True)
class MarketPair:
    """The subset of a DexScreener pair the enrichment needs, already resolved for one token."""

    address: str
    name: Optional[str]
    symbol: Optional[str]
    price_usd: float
    market_cap_usd: float
    liquidity_usd: float
    pair_address: Optional[str] = None
    dex_id: Optional[str] = None

    @classmethod
    def from_pair(cls, pair: Dict[str, Any], address: str) -> "MarketPair":
        base = pair.get("baseToken") or {}
        quote = pair.get("quoteToken") or {}
        side = base if base.get("address") == address else quote
        return cls(
            address=address,
            name=_str_or_none(side.get("name")),
            symbol=_str_or_none(side.get("symbol")),
            price_usd=to_non_negative_float(pair.get("priceUsd")),
            market_cap_usd=to_non_negative_float(pair.get("marketCap")),
            liquidity_usd=to_non_negative_float((pair.get("liquidity") or {}).get("usd")),
            pair_address=_str_or_none(pair.get("pairAddress")),
            dex_id=_str_or_none(pair.get("dexId")),
        )

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MarketPair":
        return cls(
            address=str(d["address"]),
            name=d.get("name"),
            symbol=d.get("symbol"),
            price_usd=to_non_negative_float(d.get("priceUsd")),
            market_cap_usd=to_non_negative_float(d.get("marketCapUsd")),
            liquidity_usd=to_non_negative_float(d.get("liquidityUsd")),
            pair_address=d.get("pairAddress"),
            dex_id=d.get("dexId"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "name": self.name,
            "symbol": self.symbol,
            "priceUsd": self.price_usd,
            "marketCapUsd": self.market_cap_usd,
            "liquidityUsd": self.liquidity_usd,
            "pairAddress": self.pair_address,
            "dexId": self.dex_id,
        }


@dataclass(frozen=True)
class EnrichedTokenRecord:
    token: RawTokenRecord
    name: str = UNKNOWN_NAME
    ticker: str = UNKNOWN_TICKER
    price_usd: float = 0.0
    market_cap_usd: float = 0.0
    total_supply: float = 0.0
    decimals: int = DEFAULT_DECIMALS
    mintable: bool = False
    freezable: bool = False
    enriched_at: str = field(default_factory=utc_now_iso)
    success: bool = False
    filtered: bool = True
    has_market_data: bool = False
    error: Optional[str] = None

    @property
    def address(self) -> str:
        return self.token.address

    @classmethod
    def failed(cls, token: RawTokenRecord, error: str) -> "EnrichedTokenRecord":
        return cls(
            token=token,
            name=ERROR_NAME,
            ticker=ERROR_TICKER,
            decimals=DEFAULT_DECIMALS,
            success=False,
            filtered=True,
            error=error,
        )

    def with_filtered(self, filtered: bool) -> "EnrichedTokenRecord":
        return replace(self, filtered=filtered)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EnrichedTokenRecord":
        return cls(
            token=RawTokenRecord.from_dict(d),
            name=str(d.get("name") or UNKNOWN_NAME),
            ticker=str(d.get("ticker") or UNKNOWN_TICKER),
            price_usd=to_non_negative_float(d.get("priceUsd")),
            market_cap_usd=to_non_negative_float(d.get("marketCapUsd")),
            total_supply=to_non_negative_float(d.get("totalSupply")),
            decimals=int(d.get("decimals", DEFAULT_DECIMALS)),
            mintable=bool(d.get("mintable")),
            freezable=bool(d.get("freezable")),
            enriched_at=str(d.get("enrichedAt") or utc_now_iso()),
            success=bool(d.get("success")),
            filtered=bool(d.get("filtered", True)),
            has_market_data=bool(d.get("hasMarketData")),
            error=d.get("error"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = self.token.to_dict()
        out.update({
            "name": self.name,
            "ticker": self.ticker,
            "priceUsd": self.price_usd,
            "marketCapUsd": self.market_cap_usd,
            "totalSupply": self.total_supply,
            "decimals": self.decimals,
            "mintable": self.mintable,
            "freezable": self.freezable,
            "enrichedAt": self.enriched_at,
            "success": self.success,
            "filtered": self.filtered,
            "hasMarketData": self.has_market_data,
        })
        if self.error:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class QualificationPolicy:
    """A record qualifies iff market cap >= min_market_cap and it is neither mintable nor freezable."""

    min_market_cap: float

    def qualifies(self, record: EnrichedTokenRecord) -> bool:
        return (
            record.market_cap_usd >= self.min_market_cap
            and not record.mintable
            and not record.freezable
        )

    def apply(self, record: EnrichedTokenRecord) -> EnrichedTokenRecord:
        # failed records stay filtered no matter what their numbers say
        if not record.success and record.error:
            return record.with_filtered(True)
        return record.with_filtered(not self.qualifies(record))
