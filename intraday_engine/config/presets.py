"""
Named strategy presets.

The set of preset identifiers is closed (`PresetId`); each preset maps
to an immutable `StrategyConfig`.  Exactly one preset is active for
live trading at any time.  The `AUTO` slot is reserved for the
parameters promoted by the adaptive optimiser after the close.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Union

from .schema import EntryRule, StrategyConfig


logger = logging.getLogger(__name__)


class PresetId(str, Enum):
    S1 = "S1"
    S2 = "S2"
    S3 = "S3"
    S4 = "S4"
    S5 = "S5"
    AUTO = "AUTO"


class UnknownPresetError(ValueError):
    """Raised when a preset id is not one of `PresetId`."""


@dataclass(frozen=True)
class Preset:
    id: PresetId
    name: str
    config: StrategyConfig

    def to_dict(self) -> dict:
        return {'id': self.id.value, 'name': self.name, 'config': self.config.to_dict()}


# Parameters each preset overrides on top of the base configuration.
PRESET_OVERRIDES: Dict[PresetId, tuple] = {
    PresetId.S1: ("Balanced Momentum", dict(
        buy_rise_minutes=8,
        short_fall_minutes=8,
        trend_strength_threshold=0.75,
        allow_repeat_entry=True,
        stop_loss_percent=0.8,
        first_profit_target_percent=0.6,
        first_profit_exit_percent=60,
        remainder_hard_target_percent=1.2,
        trailing_stop_percent=0.5,
        time_exit_minutes=0,
        move_stop_to_entry_after_first_exit=True,
        entry_rule=EntryRule.TREND,
    )),
    PresetId.S2: ("Conservative Filter", dict(
        buy_rise_minutes=10,
        short_fall_minutes=10,
        trend_strength_threshold=0.82,
        allow_repeat_entry=False,
        stop_loss_percent=0.8,
        first_profit_target_percent=0.7,
        first_profit_exit_percent=65,
        remainder_hard_target_percent=1.4,
        trailing_stop_percent=0.45,
        time_exit_minutes=0,
        move_stop_to_entry_after_first_exit=True,
        entry_rule=EntryRule.TREND,
    )),
    PresetId.S3: ("Aggressive Intraday", dict(
        buy_rise_minutes=6,
        short_fall_minutes=6,
        trend_strength_threshold=0.65,
        allow_repeat_entry=True,
        stop_loss_percent=0.8,
        first_profit_target_percent=0.5,
        first_profit_exit_percent=50,
        remainder_hard_target_percent=1.0,
        trailing_stop_percent=0.6,
        time_exit_minutes=0,
        move_stop_to_entry_after_first_exit=True,
        entry_rule=EntryRule.TREND,
    )),
    PresetId.S4: ("Option-Style Bearish PUT", dict(
        buy_rise_minutes=6,
        short_fall_minutes=6,
        trend_strength_threshold=0.65,
        allow_repeat_entry=False,
        stop_loss_percent=0.8,
        first_profit_target_percent=0.5,
        first_profit_exit_percent=100,
        remainder_hard_target_percent=0,
        trailing_stop_percent=0,
        time_exit_minutes=0,
        move_stop_to_entry_after_first_exit=False,
        entry_rule=EntryRule.BEARISH_PUT,
        supertrend_factor=3.0,
        supertrend_period=10,
        rsi_period=14,
        ema_fast_period=20,
        ema_slow_period=50,
        option_premium=5.0,
        target_points=2.0,
        stop_loss_points=1.0,
        premium_move_per_underlying_percent=1.0,
    )),
    PresetId.S5: ("EMA Volume Crossover", dict(
        allow_repeat_entry=False,
        stop_loss_percent=0.8,
        first_profit_target_percent=0.5,
        first_profit_exit_percent=50,
        remainder_hard_target_percent=1.0,
        trailing_stop_percent=0.5,
        time_exit_minutes=30,
        move_stop_to_entry_after_first_exit=True,
        entry_rule=EntryRule.EMA_VOLUME,
        volume_ema_fast_period=9,
        volume_ema_slow_period=20,
    )),
}

# Presets the optimiser compares after the close.
OPTIMIZATION_CANDIDATES = (PresetId.S1, PresetId.S2, PresetId.S3)


def parse_preset_id(value: Union[str, PresetId]) -> PresetId:
    """Convert user input into a `PresetId`, raising `UnknownPresetError`."""
    if isinstance(value, PresetId):
        return value
    try:
        return PresetId(str(value).strip().upper())
    except ValueError:
        raise UnknownPresetError(f"Unknown strategy id: {value}") from None


class StrategyPresetRegistry:
    """Hold the named presets and track which one is active.

    Parameters
    ----------
    base : StrategyConfig
        Configuration every preset is derived from.  Capital, basket
        size and the daily loss limit always come from here.
    active : str or PresetId
        Preset to activate initially.
    """

    def __init__(self, base: StrategyConfig, active: Union[str, PresetId] = PresetId.S1) -> None:
        self.base = base
        self._presets: Dict[PresetId, Preset] = {}
        for preset_id, (name, overrides) in PRESET_OVERRIDES.items():
            self._presets[preset_id] = Preset(preset_id, name, self._derive(overrides))
        # The AUTO slot starts as a copy of the balanced preset until the
        # optimiser publishes a result.
        self._presets[PresetId.AUTO] = Preset(
            PresetId.AUTO,
            "Auto Optimized (pending)",
            self._presets[PresetId.S1].config,
        )
        self._active = parse_preset_id(active)

    def _derive(self, overrides: dict) -> StrategyConfig:
        return self._pin(replace(self.base, **overrides))

    def _pin(self, config: StrategyConfig) -> StrategyConfig:
        # capital and basket size are not preset parameters
        return replace(
            config,
            total_capital=self.base.total_capital,
            max_daily_loss_percent=self.base.max_daily_loss_percent,
            top_n=self.base.top_n,
            selection_limit=self.base.selection_limit,
        )

    @property
    def active_id(self) -> PresetId:
        return self._active

    @property
    def active(self) -> Preset:
        return self._presets[self._active]

    @property
    def config(self) -> StrategyConfig:
        return self.active.config

    def get(self, preset_id: Union[str, PresetId]) -> Preset:
        return self._presets[parse_preset_id(preset_id)]

    def config_for(self, preset_id: Union[str, PresetId]) -> StrategyConfig:
        return self.get(preset_id).config

    def presets(self) -> List[Preset]:
        return list(self._presets.values())

    def apply(self, preset_id: Union[str, PresetId]) -> Preset:
        """Activate a preset.  Unknown ids raise without changing state."""
        preset = self.get(preset_id)
        self._active = preset.id
        logger.info("Activated preset %s (%s)", preset.id.value, preset.name)
        return preset

    def publish_auto(self, name: str, config: StrategyConfig) -> Preset:
        """Store `config` in the reserved AUTO slot."""
        preset = Preset(PresetId.AUTO, name, self._pin(config))
        self._presets[PresetId.AUTO] = preset
        return preset
