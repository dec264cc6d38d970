"""
Batch scanning of the instrument universe.

Symbols are split into fixed-size groups. Groups run one after another while
every symbol inside a group is analyzed concurrently, so no more than
``group_size`` analyses are ever in flight. This keeps the scanner inside
the exchange's request weight limits.
"""

import asyncio
import logging
from datetime import datetime, UTC
from typing import List, Optional, Sequence

import logfire

from config.settings import settings
from data_engine.errors import ScreenerError
from data_engine.models import ScanReport, SymbolOutcome
from data_engine.screener import SolidityScreener

logger = logging.getLogger(__name__)

SCAN_OUTCOME_COUNTER = logfire.metric_counter(
    "solidity_scan_outcomes_total",
    unit="1",
    description="Per-symbol scan outcomes by status"
)


def chunk_symbols(symbols: Sequence[str], group_size: int) -> List[List[str]]:
    """
    Partition symbols into consecutive groups of ``group_size``.

    The last group may be smaller; N symbols give ceil(N / group_size) groups.
    """
    if group_size < 1:
        raise ValueError(f"group_size must be positive, got {group_size}")
    return [list(symbols[i:i + group_size]) for i in range(0, len(symbols), group_size)]


class BatchScanner:
    """Scans every eligible symbol for solidity in bounded concurrent groups."""

    def __init__(self, screener: SolidityScreener, group_size: Optional[int] = None):
        self.screener = screener
        self.group_size = group_size or settings.scan_group_size

    async def scan_all_symbols(self, min_volume: float, ratio_threshold: float) -> List[str]:
        """
        Analyze every eligible symbol and return the symbols that were analyzed.

        The analyzer always produces a result, so every symbol of a successful
        scan is accepted. The first failing analysis propagates and aborts the
        scan; use ``scan`` for per-symbol isolation.
        """
        symbols = await self.screener.list_eligible_symbols(min_volume)
        accepted: List[str] = []
        started = datetime.now(UTC)

        async def analyze(symbol: str):
            result = await self.screener.analyze_solidity(symbol, ratio_threshold)
            if result is not None:
                accepted.append(symbol)

        groups = chunk_symbols(symbols, self.group_size)
        for index, group in enumerate(groups, start=1):
            logger.debug("Scanning group %d/%d (%d symbols)", index, len(groups), len(group))
            await asyncio.gather(*(analyze(symbol) for symbol in group))

        elapsed = (datetime.now(UTC) - started).total_seconds()
        logger.info("Scanned %d symbols in %d groups in %.2fs", len(symbols), len(groups), elapsed)
        return accepted

    async def scan(
        self,
        min_volume: float,
        ratio_threshold: float,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ScanReport:
        """
        Scan every eligible symbol, isolating per-symbol failures.

        Args:
            min_volume: Quote volume a symbol must strictly exceed
            ratio_threshold: Percentage of side volume a single order must exceed
            cancel_event: When set, no further groups are issued

        Returns:
            ScanReport with one outcome per analyzed symbol. Listing failures
            still propagate since there is nothing to scan without them.
        """
        report = ScanReport()
        symbols = await self.screener.list_eligible_symbols(min_volume)
        groups = chunk_symbols(symbols, self.group_size)

        with logfire.span("scan_solidity", symbols=len(symbols), groups=len(groups)):
            for group in groups:
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    logger.info("Scan cancelled after %d of %d groups", report.group_count, len(groups))
                    break
                outcomes = await asyncio.gather(
                    *(self._analyze_isolated(symbol, ratio_threshold) for symbol in group)
                )
                report.outcomes.extend(outcomes)
                report.group_count += 1

        report.finished_at = datetime.now(UTC)
        logger.info(
            "Scan finished: %d analyzed, %d failed, %d with solidity in %.2fs",
            len(report.results), len(report.failures),
            len(report.symbols_with_solidity), report.duration_seconds,
        )
        return report

    async def _analyze_isolated(self, symbol: str, ratio_threshold: float) -> SymbolOutcome:
        try:
            result = await self.screener.analyze_solidity(symbol, ratio_threshold)
        except ScreenerError as e:
            logger.warning("Analysis failed for %s: %s", symbol, e)
            if settings.logfire_token:
                SCAN_OUTCOME_COUNTER.add(1, {"status": "error", "error": type(e).__name__})
            return SymbolOutcome(symbol=symbol, error=f"{type(e).__name__}: {e}")

        if settings.logfire_token:
            SCAN_OUTCOME_COUNTER.add(1, {"status": "ok"})
        return SymbolOutcome(symbol=symbol, result=result)
