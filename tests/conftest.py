"""
Test configuration and fakes for the stimulus timeline.
"""
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from visstim.config import ExperimentConfig  # noqa: E402
from visstim.stimuli import StimulusItem, StimulusSet  # noqa: E402

EPOCH_START_MS = 1_700_000_000_000.0


class FakeClock:
    """Virtual clock: sleeping advances time instantly."""

    def __init__(self, start_ms=EPOCH_START_MS):
        self.t = start_ms

    def now_ms(self):
        return self.t

    def sleep(self, seconds):
        self.t += seconds * 1000.0


class RecordingRenderer:
    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on or (lambda method, arg: False)

    @property
    def size(self):
        return (1280, 800)

    def _record(self, method, arg=None):
        if self.fail_on(method, arg):
            raise RuntimeError(f'{method} failed')
        self.calls.append((method, arg))

    def show_text(self, label, style='large'):
        self._record('show_text', label)
        return label

    def show_object(self, handle):
        self._record('show_object', handle)

    def clear(self):
        self._record('clear')


class ScriptedKeys:
    """Delivers each key once the clock passes its scheduled time."""

    def __init__(self, clock, script):
        self.clock = clock
        self.script = sorted(script, key=lambda item: item[0])

    def poll(self):
        due = [key for at, key in self.script if at <= self.clock.now_ms()]
        self.script = [(at, key) for at, key in self.script if at > self.clock.now_ms()]
        return due


class CallbackKeys:
    """Runs ``action`` the first time the clock passes ``at_ms``."""

    def __init__(self, clock, at_ms, action):
        self.clock = clock
        self.at_ms = at_ms
        self.action = action
        self.fired = False

    def poll(self):
        if not self.fired and self.clock.now_ms() >= self.at_ms:
            self.fired = True
            self.action()
        return []


def make_set(names, num_repeat=1, show_time_ms=100.0):
    return StimulusSet([StimulusItem(n, f'handle:{n}') for n in names], num_repeat=num_repeat,
                       show_time_ms=show_time_ms)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def renderer():
    return RecordingRenderer()


@pytest.fixture
def quick_config():
    """No countdown, baselines, fixation or post-stimulus interval."""
    return ExperimentConfig(start_baseline_s=0, end_baseline_s=0, start_fixation_ms=0, fixation_jitter_ms=0,
                            end_white_ms=0, countdown_steps=0, num_repeat=1, show_time_ms=100)


@pytest.fixture
def full_config():
    return ExperimentConfig(start_baseline_s=1, end_baseline_s=2, start_fixation_ms=300, fixation_jitter_ms=0,
                            end_white_ms=200, countdown_steps=5, countdown_interval_ms=1000, num_repeat=1,
                            show_time_ms=500)
