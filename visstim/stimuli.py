import os
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from .utils import ConfigurationError, get_image_list


class StimulusSetLocked(RuntimeError):
    pass


@dataclass(frozen=True)
class StimulusItem:
    name: str
    handle: Any


class StimulusSet:
    """Images shown with a common repeat count and display time.

    Repeat count and display time can be edited between runs only; the
    scheduler locks the set for the duration of a run.
    """

    def __init__(self, items, num_repeat: int = 3, show_time_ms: float = 5000.0):
        self._items = tuple(items)
        self._num_repeat = num_repeat
        self._show_time_ms = show_time_ms
        self._locked = False

    @property
    def items(self):
        return self._items

    @property
    def num_repeat(self) -> int:
        return self._num_repeat

    @property
    def show_time_ms(self) -> float:
        return self._show_time_ms

    @property
    def locked(self) -> bool:
        return self._locked

    def __len__(self):
        return len(self._items)

    def edit(self, num_repeat: Optional[int] = None, show_time_ms: Optional[float] = None):
        if self._locked:
            raise StimulusSetLocked('Stimulus sets cannot be edited while a run is in progress')
        if num_repeat is not None:
            self._num_repeat = num_repeat
        if show_time_ms is not None:
            self._show_time_ms = show_time_ms
        return self

    def lock(self):
        self._locked = True

    def unlock(self):
        self._locked = False

    def validate(self):
        if isinstance(self._num_repeat, bool) or not isinstance(self._num_repeat, int) or self._num_repeat < 1:
            raise ConfigurationError(f'num_repeat must be an integer >= 1, got {self._num_repeat!r}')
        if self._show_time_ms <= 0:
            raise ConfigurationError(f'show_time_ms must be > 0, got {self._show_time_ms!r}')
        return self

    def __repr__(self):
        return f'StimulusSet(items={len(self._items)}, num_repeat={self._num_repeat}, show_time_ms={self._show_time_ms})'


def load_stimulus_set(stim_dir: str, factory: Callable[[str], Any], num_repeat: int = 3,
                      show_time_ms: float = 5000.0) -> StimulusSet:
    # Files keep their sorted-by-name order; nothing is reversed.
    images = get_image_list(stim_dir)
    items = [StimulusItem(os.path.basename(path), factory(path)) for path in images]
    return StimulusSet(items, num_repeat=num_repeat, show_time_ms=show_time_ms).validate()


def load_stimulus_sets(entries, factory: Callable[[str], Any], num_repeat: int = 3,
                       show_time_ms: float = 5000.0) -> List[StimulusSet]:
    """Load one set per entry.

    An entry is either a directory path or a dict with ``path`` and optional
    ``num_repeat`` / ``show_time_ms`` that override the defaults.
    """
    sets = []
    for entry in entries:
        if isinstance(entry, dict):
            path = entry['path']
            repeat = entry.get('num_repeat', num_repeat)
            show_time = entry.get('show_time_ms', show_time_ms)
        else:
            path, repeat, show_time = entry, num_repeat, show_time_ms
        sets.append(load_stimulus_set(path, factory, num_repeat=repeat, show_time_ms=show_time))
    return sets
