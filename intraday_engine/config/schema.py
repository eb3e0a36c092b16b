"""
Configuration schema and loader.

This module defines dataclasses that mirror the expected structure of
the YAML configuration file (`config.yaml`).  A helper function
`load_config()` reads a YAML file from disk and returns an instance
of `Config` populated with reasonable defaults for any missing
fields.

`StrategyConfig` is the immutable parameter bundle used by the
position lifecycle.  Named presets (see `presets.py`) are built from
the base `StrategyConfig` found here by overriding a subset of its
fields, so capital and risk limits configured in the YAML file apply
to every preset.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List

import yaml

from ..utils.timeutils import parse_time_str


class EntryRule(str, Enum):
    """Entry signal used by a strategy configuration."""

    TREND = "trend"
    BEARISH_PUT = "bearish_put"
    EMA_VOLUME = "ema_volume"


@dataclass(frozen=True)
class StrategyConfig:
    """Immutable parameter bundle driving entries and exits.

    Percent fields are expressed in percent units (``0.6`` means 0.6 %).

    Attributes
    ----------
    buy_rise_minutes, short_fall_minutes : int
        Trend lookback, in observations, for long and short entries.
    trend_strength_threshold : float
        Fraction (0-1] of favourable steps required inside the lookback.
    stop_loss_percent : float
        Adverse move that closes a position before the first target.
    first_profit_target_percent, first_profit_exit_percent : float
        Move that books the first partial exit and the share of the
        original size sold there.
    remainder_hard_target_percent : float
        Move that closes the remainder after partial booking.
    trailing_stop_percent : float
        Give-back from the best favourable move that closes the remainder.
    time_exit_minutes : int
        Close a position that has not reached its first target after this
        many minutes.  ``0`` disables the rule.
    move_stop_to_entry_after_first_exit : bool
        Close the remainder as soon as the move returns to break-even.
    allow_repeat_entry : bool
        Allow re-entry on the same tick a position was fully closed.
    allow_short : bool
        Allow short entries on a confirmed down-trend.
    total_capital, max_daily_loss_percent, top_n, selection_limit
        Capital, daily loss cutoff and basket sizing.
    entry_rule : EntryRule
        Which entry signal the configuration trades.
    """

    buy_rise_minutes: int = 8
    short_fall_minutes: int = 8
    trend_strength_threshold: float = 0.75
    stop_loss_percent: float = 0.8
    first_profit_target_percent: float = 0.6
    first_profit_exit_percent: float = 60.0
    remainder_hard_target_percent: float = 1.2
    trailing_stop_percent: float = 0.5
    time_exit_minutes: int = 0
    move_stop_to_entry_after_first_exit: bool = True
    allow_repeat_entry: bool = True
    allow_short: bool = True
    total_capital: float = 10_000.0
    max_daily_loss_percent: float = 1.0
    top_n: int = 5
    selection_limit: int = 0
    entry_rule: EntryRule = EntryRule.TREND
    # Option-style (bearish PUT) sub-mode
    option_premium: float = 5.0
    target_points: float = 2.0
    stop_loss_points: float = 1.0
    premium_move_per_underlying_percent: float = 1.0
    supertrend_factor: float = 3.0
    supertrend_period: int = 10
    rsi_period: int = 14
    ema_fast_period: int = 20
    ema_slow_period: int = 50
    # EMA / volume crossover
    volume_ema_fast_period: int = 9
    volume_ema_slow_period: int = 20

    @property
    def capital_per_slot(self) -> float:
        return self.total_capital / max(1, self.top_n)

    @property
    def daily_loss_limit(self) -> float:
        return self.total_capital * self.max_daily_loss_percent / 100.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['entry_rule'] = self.entry_rule.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StrategyConfig":
        """Build a config from a (possibly partial) mapping.

        Unknown keys raise `ValueError` so typos in YAML files are not
        silently ignored.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown strategy parameters: {unknown}")
        values = dict(data)
        if 'entry_rule' in values:
            values['entry_rule'] = EntryRule(values['entry_rule'])
        return cls(**values)


@dataclass
class SessionConfig:
    """Defines the trading session for each day.

    Attributes
    ----------
    timezone : str
        IANA timezone name in which all session times are interpreted.
    open, close, square_off : str
        Market open, market close and forced square-off times in `HH:MM`
        24-hour format.
    warmup_minutes : int
        Minutes before the open during which the engine starts collecting
        prices without trading.
    weekdays_only : bool
        Treat Saturdays and Sundays as closed.
    """

    timezone: str = "Asia/Kolkata"
    open: str = "09:00"
    close: str = "15:00"
    square_off: str = "14:50"
    warmup_minutes: int = 30
    weekdays_only: bool = True


@dataclass
class MT5Config:
    """Holds parameters required to connect to a MetaTrader 5 terminal."""

    login: int = 0
    password: str = ""
    server: str = ""
    path: str = ""


@dataclass
class DataConfig:
    """Data source configuration.

    Attributes
    ----------
    source : str
        ``yahoo``, ``mt5`` or ``csv``.
    csv_dir : str
        Directory with per-date minute CSV files for offline trials.
    screener_count : int
        Number of symbols requested from each screener list.
    request_timeout : float
        HTTP timeout in seconds for web data sources.
    candidate_symbols : list of str
        Static universe used when no screener is available.
    """

    source: str = "yahoo"
    csv_dir: str = "data/minute"
    screener_count: int = 250
    request_timeout: float = 15.0
    candidate_symbols: List[str] = field(default_factory=lambda: list(DEFAULT_CANDIDATE_SYMBOLS))


@dataclass
class EngineConfig:
    """Live loop, persistence and optimisation settings."""

    interval_seconds: int = 60
    state_dir: str = "data"
    history_max_points: int = 120
    history_save_interval_seconds: float = 15.0
    state_save_interval_seconds: float = 5.0
    rotation_window_minutes: int = 60
    post_close_optimization_delay_minutes: int = 60
    active_preset: str = "S1"


@dataclass
class Config:
    """Root configuration for the trading program."""

    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    data: DataConfig = field(default_factory=DataConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    mt5: MT5Config = field(default_factory=MT5Config)


DEFAULT_CANDIDATE_SYMBOLS = (
    "RELIANCE.NS", "TCS.NS", "HDFCBANK.NS", "ICICIBANK.NS", "SBIN.NS",
    "INFY.NS", "ITC.NS", "LT.NS", "AXISBANK.NS", "KOTAKBANK.NS",
    "BHARTIARTL.NS", "MARUTI.NS", "BAJFINANCE.NS", "ASIANPAINT.NS", "SUNPHARMA.NS",
    "TITAN.NS", "WIPRO.NS", "HCLTECH.NS", "ONGC.NS", "NTPC.NS",
)


def _merge_dict(defaults: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge two dictionaries.

    The values in `override` take precedence over those in `defaults`.
    This helper is used when loading YAML into nested dataclasses.
    """
    result: Dict[str, Any] = defaults.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_dict(result[key], value)
        else:
            result[key] = value
    return result


def validate_config(cfg: Config) -> None:
    """Raise `ValueError` if the configuration cannot be traded."""
    for label in ('open', 'close', 'square_off'):
        parse_time_str(getattr(cfg.session, label))
    strategy = cfg.strategy
    if strategy.total_capital <= 0:
        raise ValueError("strategy.total_capital must be positive")
    if strategy.top_n < 1:
        raise ValueError("strategy.top_n must be at least 1")
    if not 0 < strategy.trend_strength_threshold <= 1:
        raise ValueError("strategy.trend_strength_threshold must be in (0, 1]")
    if strategy.buy_rise_minutes < 1 or strategy.short_fall_minutes < 1:
        raise ValueError("trend lookbacks must be at least 1 minute")
    if cfg.data.source not in ('yahoo', 'mt5', 'csv'):
        raise ValueError(f"Unsupported data source: {cfg.data.source}")
    # presets.py builds on this module
    from .presets import parse_preset_id
    parse_preset_id(cfg.engine.active_preset)


def load_config(path: str) -> Config:
    """Load a configuration file from the given YAML path.

    Parameters
    ----------
    path : str
        Path to the YAML file.

    Returns
    -------
    Config
        A populated configuration object.  Missing fields are filled with
        sensible defaults defined in the dataclasses.
    """
    with open(path, "r", encoding="utf-8") as fh:
        raw: Dict[str, Any] = yaml.safe_load(fh) or {}

    defaults = Config()
    merged = _merge_dict(
        {
            'strategy': defaults.strategy.to_dict(),
            'session': asdict(defaults.session),
            'data': asdict(defaults.data),
            'engine': asdict(defaults.engine),
            'mt5': asdict(defaults.mt5),
        },
        raw,
    )

    cfg = Config(
        strategy=StrategyConfig.from_dict(merged['strategy']),
        session=SessionConfig(**merged['session']),
        data=DataConfig(**merged['data']),
        engine=EngineConfig(**merged['engine']),
        mt5=MT5Config(**merged['mt5']),
    )
    cfg.data.source = str(cfg.data.source).lower()
    validate_config(cfg)
    return cfg
