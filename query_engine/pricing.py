"""
Query Engine - Token Metadata and Pricing.

============================================================
PURPOSE
============================================================
Static token tables used to enrich query results with a
symbol and an approximate USD value, plus display helpers.

Prices are a fixed lookup table, not an oracle. All
arithmetic is exact Decimal; amounts are integers in the
token's smallest unit.

============================================================
"""

import re
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Dict, Optional, Union


# Ethereum mainnet addresses (lower-case)
TOKEN_ADDRESS_TO_SYMBOL: Dict[str, str] = {
    "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48": "USDC",
    "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2": "WETH",
    "0xdac17f958d2ee523a2206206994597c13d831ec7": "USDT",
    "0x6b175474e89094c44da98b954eedeac495271d0f": "DAI",
    "0x2260fac5e5542a773aa44fbcfedf7c193bc2c599": "WBTC",
    "0x7fc66500c84a76ad7e9c93437bfc5ac33e2ddae9": "AAVE",
    "0x514910771af9ca656af840dff83e8264ecf986ca": "LINK",
}

TOKEN_DECIMALS: Dict[str, int] = {
    "USDC": 6,
    "USDT": 6,
    "WETH": 18,
    "DAI": 18,
    "WBTC": 8,
    "AAVE": 18,
    "LINK": 18,
}

TOKEN_PRICES_USD: Dict[str, Decimal] = {
    "USDC": Decimal("1.0"),
    "USDT": Decimal("1.0"),
    "DAI": Decimal("1.0"),
    "WETH": Decimal("2500"),
    "WBTC": Decimal("45000"),
    "AAVE": Decimal("150"),
    "LINK": Decimal("15"),
}

DEFAULT_DECIMALS = 18
UNKNOWN_SYMBOL = "UNKNOWN"

# uint256 needs 78 significant digits
_PRECISION = 100

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

AmountLike = Union[int, str]


def shorten_address(address: str) -> str:
    if not address:
        return ""
    return f"{address[:6]}...{address[-4:]}"


def token_symbol(address: Optional[str]) -> str:
    """Symbol of a known token, otherwise the shortened address."""
    if not address:
        return UNKNOWN_SYMBOL
    symbol = TOKEN_ADDRESS_TO_SYMBOL.get(address.lower())
    if symbol:
        return symbol
    return shorten_address(address)


def token_decimals(address: Optional[str]) -> int:
    return TOKEN_DECIMALS.get(token_symbol(address), DEFAULT_DECIMALS)


def to_token_units(amount: AmountLike, address: Optional[str]) -> Decimal:
    """Smallest-unit integer -> token units."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(int(amount)).scaleb(-token_decimals(address))


def usd_value(amount: AmountLike, address: Optional[str]) -> Decimal:
    """
    Approximate USD value of an amount.

    Unknown tokens are valued at zero.
    """
    if not address:
        return Decimal(0)
    price = TOKEN_PRICES_USD.get(token_symbol(address))
    if price is None:
        return Decimal(0)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return to_token_units(amount, address) * price


def format_usd(amount: Optional[Decimal]) -> str:
    """$1.23M / $4.56K / $7.89"""
    if not amount:
        return "$0.00"
    cents = Decimal("0.01")
    if amount >= 1_000_000:
        return f"${(amount / 1_000_000).quantize(cents, rounding=ROUND_HALF_UP)}M"
    if amount >= 1_000:
        return f"${(amount / 1_000).quantize(cents, rounding=ROUND_HALF_UP)}K"
    return f"${amount.quantize(cents, rounding=ROUND_HALF_UP)}"


def format_token_amount(amount: AmountLike, address: Optional[str]) -> str:
    """
    Human-readable token amount with its symbol.

    Whole amounts above 1000 drop the fraction; smaller amounts
    keep up to 6 decimals, trailing zeros removed.
    """
    if amount in (None, "") or not address:
        return "0"
    try:
        value = int(amount)
    except (TypeError, ValueError):
        return f"{amount} (raw)"

    symbol = token_symbol(address)
    decimals = TOKEN_DECIMALS.get(symbol, DEFAULT_DECIMALS)
    whole, fraction = divmod(value, 10 ** decimals)

    if whole > 1000:
        return f"{whole:,} {symbol}"

    places = min(6, decimals)
    fraction_str = str(fraction).rjust(decimals, "0")[:places].rstrip("0")
    if fraction_str:
        return f"{whole:,}.{fraction_str} {symbol}"
    return f"{whole:,} {symbol}"


def format_event_type(event_type: str) -> str:
    """PascalCase event type to words: FlashLoan -> Flash Loan."""
    return _CAMEL_BOUNDARY.sub(" ", event_type).strip()
