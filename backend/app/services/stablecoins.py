"""Stablecoin classifier.

A heuristic, not an exact classification: static denylists, keyword matches
gated by a price band around 1.0, and USD-like naming patterns. Both false
positives (e.g. tokens with "peg" in the name) and false negatives are known
and accepted; the rules are kept as-is so listings stay comparable over time.
"""

import re
from typing import Any, Dict

STABLECOIN_IDS = frozenset([
    'tether', 'usd-coin', 'dai', 'binance-usd', 'true-usd', 'frax',
    'tether-gold', 'paxos-standard', 'gemini-dollar', 'usdd',
    'liquity-usd', 'fei-usd', 'terrausd', 'magic-internet-money',
    'stasis-eurs', 'usd-coin-wormhole', 'tether-eurt', 'usd-coin-avalanche-bridged-usdc.e',
    'usd-coin-polygon', 'usd-coin-arbitrum', 'usd-coin-optimism', 'usd-coin-base',
    'ethena-usde', 'ethena-staked-usde', 'paypal-usd', 'currency-one-usd',
    'blackrock-usd-institutional-digital-liquidity-fund', 'falcon-usd', 'first-digital-usd',
    'usds', 'usdt0', 'usd1', 'usdtb', 'bfusd', 'susds', 'usdg', 'ripple-usd',
    'circle-usyc', 'usual-usd', 'superstate-short-duration-u-s-government-securities-fund',
    'ousg', 'noble-usdc', 'eurc', 'crvusd', 'savings-dai', 'standx-dusd',
    'compounding-opendollar', 'resolv-usr', 'resolv-wstusr', 'cap-usd', 'usda',
    'usdo', 'usx', 'usdb', 'c1usd', 'buidl', 'usdf', 'fdusd', 'usd0', 'dusd',
    'cusdo', 'wstusr', 'usr',
])

STABLECOIN_SYMBOLS = frozenset([
    'usdt', 'usdc', 'dai', 'busd', 'tusd', 'frax', 'usdd', 'lusd', 'fei', 'ust', 'mim', 'eurs', 'eurt',
    'usde', 'susde', 'pyusd', 'c1usd', 'buidl', 'usdf', 'fdusd', 'usds', 'usdt0', 'usd1', 'usdtb',
    'bfusd', 'susds', 'usdg', 'rlusd', 'usyc', 'usd0', 'ustb', 'ousg', 'usdc.n', 'eurc', 'crvusd',
    'sdai', 'dusd', 'cusdo', 'wstusr', 'usr', 'cusd', 'usda', 'usdo', 'usx', 'usdb', 'fdit', 'pc0000031',
])

# Order matters only for readability; any match triggers the price-band check
STABLECOIN_KEYWORDS = (
    'usd', 'usdt', 'usdc', 'dai', 'busd', 'tusd', 'frax', 'usdd', 'lusd', 'fei', 'ust', 'mim',
    'eurs', 'eurt', 'usde', 'pyusd', 'usdf', 'fdusd', 'usds', 'usdg', 'rlusd', 'usyc', 'usd0',
    'usd1', 'usdt0', 'usdtb', 'bfusd', 'susds', 'susde', 'ousg', 'buidl', 'c1usd', 'eurc', 'crvusd',
    'sdai', 'dusd', 'cusdo', 'wstusr', 'usr', 'cusd', 'usda', 'usdo', 'usx', 'usdb', 'fdit',
    'stablecoin', 'stable', 'peg', 'pegged', 'wrapped usd', 'wrapped usdt', 'wrapped usdc',
    'bridged usdt', 'bridged usdc', 'bridged usd', 'staked usd', 'staked usdt', 'staked usdc',
)

# Keyword hits on these fragments classify as stable regardless of price
USD_FAMILY = ('usd', 'usdt', 'usdc', 'dai', 'busd', 'tusd')

PEG_PRICE_LOW = 0.95
PEG_PRICE_HIGH = 1.05

_SYMBOL_PATTERNS = [
    re.compile(r'^usd[0-9]*$', re.IGNORECASE),
    re.compile(r'^usdt[0-9]*$', re.IGNORECASE),
    re.compile(r'^usdc[0-9]*$', re.IGNORECASE),
    re.compile(r'^usd[a-z]*$', re.IGNORECASE),
]

_NAME_PATTERNS = [
    re.compile(r'usd[0-9]', re.IGNORECASE),
    re.compile(r'usdt[0-9]', re.IGNORECASE),
    re.compile(r'usdc[0-9]', re.IGNORECASE),
    re.compile(r'bridged.*usd', re.IGNORECASE),
    re.compile(r'wrapped.*usd', re.IGNORECASE),
    re.compile(r'staked.*usd', re.IGNORECASE),
]


def is_stablecoin(coin: Dict[str, Any]) -> bool:
    """Return True when an upstream market entry looks like a stablecoin."""
    coin_id = str(coin.get('id') or '').lower()
    symbol = str(coin.get('symbol') or '').lower()
    name = str(coin.get('name') or '').lower()

    if coin_id in STABLECOIN_IDS or symbol in STABLECOIN_SYMBOLS:
        return True

    for keyword in STABLECOIN_KEYWORDS:
        if keyword in name or keyword in symbol:
            price = coin.get('current_price') or 0
            if PEG_PRICE_LOW <= price <= PEG_PRICE_HIGH:
                return True
            if any(fragment in name or fragment in symbol for fragment in USD_FAMILY):
                return True

    if any(pattern.match(symbol) for pattern in _SYMBOL_PATTERNS):
        return True

    return any(pattern.search(name) for pattern in _NAME_PATTERNS)
