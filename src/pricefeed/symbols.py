from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Final

# CoinGecko asset ids for the tickers shown to users.
COINGECKO_IDS: Final[Mapping[str, str]] = MappingProxyType(
    {
        "btc": "bitcoin",
        "eth": "ethereum",
        "bnb": "binancecoin",
        "usdt": "tether",
        "usdc": "usd-coin",
        "ada": "cardano",
        "xrp": "ripple",
        "sol": "solana",
        "doge": "dogecoin",
        "matic": "matic-network",
        "dot": "polkadot",
        "avax": "avalanche-2",
        "trx": "tron",
        "bch": "bitcoin-cash",
        "xlm": "stellar",
        "link": "chainlink",
        "sui": "sui",
        "wsteth": "wrapped-steth",
        "wbtc": "wrapped-bitcoin",
        "steth": "staked-ether",
        "hype": "hyperliquid",
        "leo": "leo-token",
    }
)


def canonical_symbol(symbol: str) -> str:
    """Returns the canonical (stripped, lower-case) form of a ticker."""
    return symbol.strip().lower()


class SymbolIdMapper:
    """Translates user-facing tickers to upstream provider ids and back.

    The table is static configuration: it is copied into a read-only mapping
    at construction and never written afterwards. Symbols without an entry
    map to themselves.
    """

    def __init__(self, table: Mapping[str, str] | None = None) -> None:
        source = COINGECKO_IDS if table is None else table
        self._table: Mapping[str, str] = MappingProxyType(
            {canonical_symbol(k): v.strip().lower() for k, v in source.items()}
        )

    @classmethod
    def identity(cls) -> "SymbolIdMapper":
        """A mapper for providers whose ids already are the symbols."""
        return cls({})

    @property
    def table(self) -> Mapping[str, str]:
        return self._table

    def to_provider_id(self, symbol: str) -> str:
        """Forward lookup. Case-insensitive, identity for unmapped symbols."""
        key = canonical_symbol(symbol)
        return self._table.get(key, key)

    def to_symbol(self, provider_id: str, candidates: Iterable[str]) -> str:
        """Reverse lookup restricted to the symbols of the original request.

        Returns the candidate whose forward mapping equals `provider_id`, or
        the provider id itself when no candidate matches.
        """
        wanted = provider_id.strip().lower()
        for candidate in candidates:
            if self.to_provider_id(candidate) == wanted:
                return canonical_symbol(candidate)
        return wanted
