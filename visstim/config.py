from dataclasses import asdict, dataclass, fields
from typing import Optional

from .utils import ConfigurationError, apply_overrides


@dataclass(frozen=True)
class ExperimentConfig:
    start_baseline_s: float = 180.0
    end_baseline_s: float = 180.0
    start_fixation_ms: float = 1500.0
    fixation_jitter_ms: float = 0.0
    end_white_ms: float = 1500.0
    countdown_steps: int = 5
    countdown_interval_ms: float = 1000.0
    num_repeat: int = 3
    show_time_ms: float = 5000.0
    shuffle_within: bool = False
    shuffle_between: bool = False
    show_progress: bool = False
    cancel_key: str = 'escape'
    seed: Optional[int] = None

    @classmethod
    def from_settings(cls, settings: dict) -> 'ExperimentConfig':
        """Build a validated config from the ``experiment_params`` block of settings.json."""
        ex = settings.get('experiment_params', {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(ex) - known)
        if unknown:
            raise ConfigurationError(f'Unknown experiment parameters: {", ".join(unknown)}')
        config = cls(**{k: v for k, v in ex.items() if k in known})
        config.validate()
        return config

    def validate(self):
        if self.fixation_jitter_ms < 0:
            raise ConfigurationError(f'fixation_jitter_ms must be >= 0, got {self.fixation_jitter_ms}')
        if not isinstance(self.countdown_steps, int) or self.countdown_steps < 0:
            raise ConfigurationError(f'countdown_steps must be a non-negative integer, got {self.countdown_steps}')
        if self.countdown_interval_ms <= 0:
            raise ConfigurationError(f'countdown_interval_ms must be > 0, got {self.countdown_interval_ms}')
        if isinstance(self.num_repeat, bool) or not isinstance(self.num_repeat, int) or self.num_repeat < 1:
            raise ConfigurationError(f'num_repeat must be an integer >= 1, got {self.num_repeat}')
        if self.show_time_ms <= 0:
            raise ConfigurationError(f'show_time_ms must be > 0, got {self.show_time_ms}')
        if not self.cancel_key:
            raise ConfigurationError('cancel_key must not be empty')
        return self


def build_config(settings: dict, overrides=None, seed=None) -> ExperimentConfig:
    """Merge settings.json, ``key=value`` overrides and an explicit seed, in that order."""
    params = asdict(ExperimentConfig())
    params.update(settings.get('experiment_params', {}))
    params = apply_overrides(params, overrides)
    if seed is not None:
        params['seed'] = seed
    return ExperimentConfig.from_settings({'experiment_params': params})
