"""
Symbol Normalizer

Every exchange spells instruments differently:

    Binance     BTCUSDT
    OKX spot    BTC-USDT
    OKX swap    BTC-USDT-SWAP
    ccxt        BTC/USDT, BTC/USDT:USDT

Internally we use one canonical spelling, {BASE}{QUOTE} upper-case with no
separators (e.g. "BTCUSDT"). normalize() never raises: an unrecognised format
is passed through with its separators stripped.
"""

import re
from typing import NamedTuple


# Checked in order, first match wins
QUOTE_CURRENCIES = ("USDT", "USDC", "BTC", "ETH", "BNB")

# Derivative markers stripped before separators are removed
_SUFFIXES = ("-SWAP", "-PERP", "_PERP")

_SEPARATORS = re.compile(r"[-_/\s]")


class SymbolParts(NamedTuple):
    base: str
    quote: str


def normalize(raw: str) -> str:
    """
    Convert an exchange-native instrument identifier to canonical form.

    Examples:
        >>> normalize("BTC-USDT-SWAP")
        'BTCUSDT'
        >>> normalize("eth/usdt:USDT")
        'ETHUSDT'
        >>> normalize("BTCUSDT")
        'BTCUSDT'
    """
    symbol = (raw or "").strip().upper()

    for suffix in _SUFFIXES:
        if symbol.endswith(suffix):
            symbol = symbol[: -len(suffix)]
            break

    # ccxt settle currency: "BTC/USDT:USDT"
    symbol = symbol.split(":", 1)[0]
    return _SEPARATORS.sub("", symbol)


def parse(symbol: str) -> SymbolParts:
    """
    Split a canonical symbol into base and quote assets.

    The quote is matched against QUOTE_CURRENCIES as a suffix, in list order.
    When nothing matches, the last four characters are taken as the quote.
    That fallback is a heuristic only; it is wrong for e.g. three-letter
    quotes that are not in the list.

    Examples:
        >>> parse("BTCUSDT")
        SymbolParts(base='BTC', quote='USDT')
        >>> parse("ETHBTC")
        SymbolParts(base='ETH', quote='BTC')
    """
    for quote in QUOTE_CURRENCIES:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return SymbolParts(symbol[: -len(quote)], quote)

    return SymbolParts(symbol[:-4], symbol[-4:])


def is_same_pair(a: str, b: str) -> bool:
    """True iff both spellings normalize to the same canonical symbol."""
    return normalize(a) == normalize(b)


def display_name(symbol: str) -> str:
    """'BTC-USDT-SWAP' -> 'BTC/USDT'"""
    base, quote = parse(normalize(symbol))
    return f"{base}/{quote}"


def to_dashed(symbol: str) -> str:
    """Canonical symbol in BASE-QUOTE form (OKX instrument id)."""
    base, quote = parse(normalize(symbol))
    return f"{base}-{quote}"
