from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

from navigation.navd.models import TravelMode
from navigation.navd.position_source import PositionOptions

DEFAULT_CONFIG_PATH = Path(__file__).with_name('nav_config.yaml')


@dataclass(frozen=True)
class ModeThresholds:
  min_speed_mps: float
  deviation_distance_m: float
  wrong_way_threshold_deg: float
  recalculate_distance_m: float


@dataclass(frozen=True)
class NavConfig:
  advance_threshold_m: float = 20.0
  arrival_threshold_m: float = 50.0
  min_moving_speed_mps: float = 0.5
  announce_thresholds_m: tuple[float, ...] = (100.0, 50.0)
  degraded_accuracy_m: float = 50.0
  first_fix_timeout_s: float = 10.0

  reroute_interval_s: float = 30.0
  reroute_savings_threshold_s: float = 120.0
  provider_timeout_s: float = 10.0
  position_history_size: int = 10
  deviation_alternative_after_s: float = 30.0
  deviation_recalculate_after_s: float = 60.0

  position: PositionOptions = field(default_factory=PositionOptions)
  announcement_cooldowns_s: dict[str, float] = field(default_factory=lambda: {'wrong_way': 10.0, 'deviation': 15.0, 'reroute': 20.0})
  modes: dict[TravelMode, ModeThresholds] = field(default_factory=dict)

  def __post_init__(self):
    # High to low so pre-announcements fire in distance order
    object.__setattr__(self, 'announce_thresholds_m', tuple(sorted(self.announce_thresholds_m, reverse=True)))

  def thresholds_for(self, mode: TravelMode) -> ModeThresholds:
    if mode in self.modes:
      return self.modes[mode]
    return ModeThresholds(min_speed_mps=self.min_moving_speed_mps, deviation_distance_m=self.arrival_threshold_m,
                          wrong_way_threshold_deg=120.0, recalculate_distance_m=self.arrival_threshold_m * 4)

  @classmethod
  def load(cls, path: str | Path = DEFAULT_CONFIG_PATH, **overrides) -> 'NavConfig':
    with Path(path).open() as file:
      raw = yaml.safe_load(file) or {}

    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
      raise ValueError(f"Unknown navigation config keys in {path}: {sorted(unknown)}")

    if 'announce_thresholds_m' in raw:
      raw['announce_thresholds_m'] = tuple(float(t) for t in raw['announce_thresholds_m'])
    if 'position' in raw:
      raw['position'] = PositionOptions(**raw['position'])
    if 'modes' in raw:
      raw['modes'] = {TravelMode(name): ModeThresholds(**values) for name, values in raw['modes'].items()}

    raw.update(overrides)
    return cls(**raw)
