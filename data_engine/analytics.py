"""
Analytics engine for liquidity-concentration metrics.

Provides pure math functions for:
- Side aggregation (total volume and dominant order)
- Concentration test against a percentage threshold
- Solidity result assembly
"""

from typing import Iterable, Tuple

from data_engine.models import OrderBook, OrderBookLevel, SolidityLevel, SolidityResult


def summarize_side(levels: Iterable[OrderBookLevel]) -> Tuple[float, float, float]:
    """
    Aggregate one side of the book.

    The dominant level is tracked with a strict comparison, so on equal
    volumes the first level seen wins.

    Returns:
        (total_volume, dominant_price, dominant_volume)
    """
    total = 0.0
    max_volume = 0.0
    max_price = 0.0
    for level in levels:
        total += level.amount
        if max_volume < level.amount:
            max_volume = level.amount
            max_price = level.price
    return total, max_price, max_volume


def exceeds_concentration(dominant_volume: float, total_volume: float, ratio_threshold: float) -> bool:
    """
    Check whether the dominant order is more than ``ratio_threshold`` percent of the side.

    An empty or all-zero side has no signal.
    """
    try:
        concentration = dominant_volume / (total_volume / 100)
    except ZeroDivisionError:
        return False
    return concentration > ratio_threshold


def compute_solidity(orderbook: OrderBook, quote_volume: float, ratio_threshold: float) -> SolidityResult:
    """
    Compute the solidity result for an order book snapshot.

    Args:
        orderbook: Snapshot of current market depth
        quote_volume: 24h quote volume of the instrument
        ratio_threshold: Percentage of side volume a single order must exceed

    Returns:
        SolidityResult with solidity_long set from the asks and
        solidity_short set from the bids when their signals fire.
    """
    total_ask, max_ask_price, max_ask = summarize_side(orderbook.asks)
    total_bid, max_bid_price, max_bid = summarize_side(orderbook.bids)

    solidity_long = None
    if exceeds_concentration(max_ask, total_ask, ratio_threshold):
        solidity_long = SolidityLevel(price=max_ask_price, volume=max_ask)

    solidity_short = None
    if exceeds_concentration(max_bid, total_bid, ratio_threshold):
        solidity_short = SolidityLevel(price=max_bid_price, volume=max_bid)

    return SolidityResult(
        symbol=orderbook.symbol,
        quote_volume=quote_volume,
        buy_volume=total_ask,
        sell_volume=total_bid,
        solidity_long=solidity_long,
        solidity_short=solidity_short,
    )
