"""Trend scoring over the persisted coin listing.

Trend score (0-100) is a weighted blend of:
    liquidity (volume / market cap)  30%
    24h price momentum               25%
    market-cap rank position         20%
    volume level (log scale)         15%
    volatility (|24h change|)        10%

A separate heuristic estimates the next 24h move from momentum, mean
reversion, liquidity, rank stability, volatility and size, clamped to +/-15%.
Coins are ranked by trend score plus a bonus for the strength of that
estimate.
"""

import math
from typing import Any, Dict, List

TOP_N = 50
PREDICTION_LIMIT = 15.0

WEIGHTS = {
    "liquidity": 0.30,
    "momentum": 0.25,
    "market_cap": 0.20,
    "volume_trend": 0.15,
    "volatility": 0.10,
}

MIN_VOLUME = 1_000_000
MAX_VOLUME = 50_000_000_000

# (band start rank, band end rank, score at band start, score drop across the band)
_LOG_RANK_BANDS = [
    (10, 50, 90, 20),
    (50, 100, 70, 20),
    (100, 200, 50, 20),
    (200, 300, 30, 15),
    (300, 400, 15, 10),
]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def market_cap_score(rank: int) -> int:
    """100 for rank 1 tapering to 0 at rank 500 (linear, then log bands)."""
    if rank <= 1:
        score = 100.0
    elif rank <= 10:
        score = 100 - (rank - 1) * (10 / 9)
    elif rank <= 400:
        for low, high, start, drop in _LOG_RANK_BANDS:
            if rank <= high:
                normalized = (math.log10(rank) - math.log10(low)) / (math.log10(high) - math.log10(low))
                score = start - normalized * drop
                break
    else:
        score = max(0.0, 5 - (rank - 400) * (5 / 100))
    return _round_half_up(score)


def volume_trend_score(volume: float) -> float:
    if volume <= 0:
        return 0.0
    log_min = math.log10(MIN_VOLUME + 1)
    log_max = math.log10(MAX_VOLUME + 1)
    normalized = (math.log10(volume + 1) - log_min) / (log_max - log_min)
    if normalized <= 0:
        return 0.0
    return _clamp(normalized ** 0.7 * 100, 0, 100)


def predict_change(price_change: float, volume_ratio: float, rank: int, market_cap: float) -> float:
    """Unclamped 24h move estimate in percent."""
    if price_change > 0:
        momentum = min(price_change * 0.7, price_change * 0.5 + math.log(1 + abs(price_change)) * 0.3)
    else:
        momentum = price_change * 0.65

    if price_change > 15:
        reversion = -3.5
    elif price_change > 10:
        reversion = -2.5
    elif price_change > 5:
        reversion = -1.0
    elif price_change < -15:
        reversion = 4.0
    elif price_change < -10:
        reversion = 3.0
    elif price_change < -5:
        reversion = 1.5
    else:
        reversion = 0.0

    if volume_ratio > 0.25:
        liquidity = 1.5
    elif volume_ratio > 0.15:
        liquidity = 1.0
    elif volume_ratio > 0.08:
        liquidity = 0.3
    elif volume_ratio > 0.03:
        liquidity = -0.3
    else:
        liquidity = -0.8

    if rank <= 5:
        stability = 0.8
    elif rank <= 10:
        stability = 0.5
    elif rank <= 20:
        stability = 0.2
    elif rank <= 50:
        stability = 0.0
    else:
        stability = -0.3

    volatility = -0.5 if abs(price_change) > 20 else 0.0

    if market_cap > 10_000_000_000:
        size = 0.3
    elif market_cap > 1_000_000_000:
        size = 0.1
    else:
        size = 0.0

    return momentum + reversion + liquidity + stability + volatility + size


def prediction_direction(prediction: float) -> str:
    if prediction > 5:
        return "strongBullish"
    if prediction > 2:
        return "bullish"
    if prediction < -5:
        return "strongBearish"
    if prediction < -2:
        return "bearish"
    return "neutral"


def trend_level(score: int) -> str:
    if score >= 80:
        return "veryStrongTrend"
    if score >= 70:
        return "strongTrend"
    if score >= 45:
        return "moderateTrend"
    if score >= 20:
        return "weakTrend"
    return "veryWeakTrend"


def position_bonus(prediction: float) -> int:
    strength = abs(prediction)
    if strength > 3:
        return 40
    if strength > 1:
        return 20
    if strength > 0:
        return 10
    return 0


def score_coin(coin: Dict[str, Any], index: int) -> Dict[str, Any]:
    price_change = coin.get("price_change_percentage_24h") or 0
    volume = coin.get("total_volume") or 0
    market_cap = coin.get("market_cap") or 0
    rank = coin.get("market_cap_rank") or index + 1
    price = coin.get("current_price") or 0

    volume_ratio = volume / market_cap if market_cap > 0 else 0
    components = {
        "liquidity": _clamp(volume_ratio * 100, 0, 100),
        "momentum": _clamp(50 + price_change * (50 / 60), 0, 100),
        "market_cap": market_cap_score(rank),
        "volume_trend": volume_trend_score(volume),
        "volatility": min(100, abs(price_change) * (100 / 60)),
    }
    trend_score = _round_half_up(sum(components[name] * weight for name, weight in WEIGHTS.items()))

    raw_prediction = predict_change(price_change, volume_ratio, rank, market_cap)
    if not math.isfinite(raw_prediction):
        raw_prediction = 0.0
    prediction = _clamp(raw_prediction, -PREDICTION_LIMIT, PREDICTION_LIMIT)
    direction = prediction_direction(prediction)

    if direction in ("strongBullish", "bullish"):
        position_type = "long"
    elif direction in ("strongBearish", "bearish"):
        position_type = "short"
    else:
        position_type = "neutral"

    return {
        "id": coin.get("id"),
        "name": coin.get("name"),
        "symbol": (coin.get("symbol") or "").upper(),
        "image": coin.get("image"),
        "current_price": price,
        "price_change_percentage_24h": price_change,
        "market_cap": market_cap,
        "total_volume": volume,
        "circulating_supply": coin.get("circulating_supply"),
        "market_cap_rank": rank,
        "sparkline_in_7d": coin.get("sparkline_in_7d"),
        "trend_score": trend_score,
        "trend_level": trend_level(trend_score),
        "liquidity_score": _round_half_up(components["liquidity"]),
        "momentum_score": _round_half_up(components["momentum"]),
        "market_cap_score": components["market_cap"],
        "volume_trend_score": _round_half_up(components["volume_trend"]),
        "volatility_score": _round_half_up(components["volatility"]),
        "volume_ratio": round(volume_ratio, 4),
        "ai_prediction": round(prediction, 2),
        "ai_direction": direction,
        "ai_confidence": _round_half_up(min(100, abs(raw_prediction) * 10)),
        "position_type": position_type,
        "prediction_base_price": price,
        "predicted_price": price * (1 + prediction / 100),
        "predicted_change": round(raw_prediction, 2),
        "composite_score": trend_score + position_bonus(raw_prediction),
    }


def calculate_trending_scores(coins: List[Dict[str, Any]], top_n: int = TOP_N) -> List[Dict[str, Any]]:
    """Score every coin and keep the `top_n` by composite, trend score, then 24h change."""
    scored = [score_coin(coin, index) for index, coin in enumerate(coins or [])]
    scored.sort(
        key=lambda c: (c["composite_score"], c["trend_score"], c["price_change_percentage_24h"]),
        reverse=True,
    )
    return scored[:top_n]
