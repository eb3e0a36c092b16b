"""
Daily loss cutoff.

Realised P&L of exits dated today plus the unrealised P&L of every open
position is compared against ``-(capital * max_daily_loss_percent /
100)``.  Once the sum reaches that level the cutoff trips and stays
tripped until the trading date changes.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping, Optional

from ..config.schema import StrategyConfig
from ..utils.timeutils import trading_date
from .lifecycle import unrealized_pnl
from .models import DailyControl, Position, Trade


logger = logging.getLogger(__name__)


class DailyRiskController:
    """Evaluate and latch the daily loss cutoff.

    Parameters
    ----------
    config : StrategyConfig
        Supplies capital and the maximum daily loss percentage.
    timezone : str
        Timezone used to date trades.
    control : DailyControl, optional
        Existing state to continue from (e.g. after a restart).
    """

    def __init__(self, config: StrategyConfig, timezone: str = "Asia/Kolkata",
                 control: Optional[DailyControl] = None) -> None:
        self.config = config
        self.timezone = timezone
        self.control = control or DailyControl()

    @property
    def daily_loss_limit(self) -> float:
        return self.config.daily_loss_limit

    @property
    def cutoff_hit(self) -> bool:
        return self.control.cutoff_hit

    def roll(self, day: str) -> bool:
        rolled = self.control.roll(day)
        if rolled:
            logger.info("Daily control reset for %s", day)
        return rolled

    def realized_pnl(self, day: str, trades: Iterable[Trade]) -> float:
        """Sum of exit P&L booked on `day`."""
        total = 0.0
        for trade in trades:
            if trade.action.is_exit and trading_date(trade.time, self.timezone) == day:
                total += trade.pnl or 0.0
        return total

    def unrealized_pnl(self, positions: Iterable[Position], prices: Mapping[str, float]) -> float:
        """Mark every position with a known price; others count as zero."""
        total = 0.0
        for position in positions:
            price = prices.get(position.symbol)
            if price is None or price <= 0:
                continue
            total += unrealized_pnl(position, price)
        return total

    def check(self, day: str, trades: Iterable[Trade], positions: Iterable[Position],
              prices: Mapping[str, float]) -> bool:
        """Update the cutoff for `day` and return whether it is active."""
        self.roll(day)
        if self.control.cutoff_hit:
            return True
        day_pnl = self.realized_pnl(day, trades) + self.unrealized_pnl(positions, prices)
        if day_pnl <= -self.daily_loss_limit:
            self.control.cutoff_hit = True
            logger.warning(
                "Daily loss cutoff hit on %s: P&L %.2f <= -%.2f", day, day_pnl, self.daily_loss_limit
            )
        return self.control.cutoff_hit

    def summary(self, day: str, trades: Iterable[Trade]) -> Dict[str, float]:
        return {
            'daily_realized_pnl': round(self.realized_pnl(day, trades), 2),
            'daily_cutoff_amount': round(-self.daily_loss_limit, 2),
        }
