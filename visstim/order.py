import random
from dataclasses import dataclass
from typing import List, Sequence

from .utils import ConfigurationError


@dataclass(frozen=True)
class Trial:
    set_index: int
    item_index: int


def generate(sets: Sequence, shuffle_within: bool, shuffle_between: bool, rng=None) -> List[Trial]:
    """Build the trial order for a run.

    Sets are swept in index order, one block per set per sweep, until every
    set has used up its repeat count. Each block lists all of the set's items
    and is shuffled on its own when ``shuffle_within`` is set. With
    ``shuffle_between`` the concatenated list is shuffled as a whole, so
    trials can move across block and set boundaries.

    ``rng`` needs a ``shuffle`` method. Pass ``random.Random(seed)`` for a
    reproducible order; the default is unseeded.
    """
    rng = rng if rng is not None else random.Random()
    remaining = [s.num_repeat for s in sets]
    blocks = []
    while any(n > 0 for n in remaining):
        for set_index, stim_set in enumerate(sets):
            if remaining[set_index] <= 0:
                continue
            remaining[set_index] -= 1
            block = [Trial(set_index, item_index) for item_index in range(len(stim_set.items))]
            if shuffle_within:
                rng.shuffle(block)
            blocks.append(block)

    trials = [trial for block in blocks for trial in block]
    if shuffle_between:
        rng.shuffle(trials)
    return trials


def plan_trials(sets: Sequence, config, rng=None) -> List[Trial]:
    """Validate ``sets`` and ``config``, then generate the trial order.

    Raises ConfigurationError when there is nothing to run.
    """
    if not sets:
        raise ConfigurationError('No stimulus sets loaded')
    config.validate()
    for stim_set in sets:
        stim_set.validate()
    trials = generate(sets, config.shuffle_within, config.shuffle_between, rng=rng)
    if not trials:
        raise ConfigurationError('Stimulus sets contain no images; nothing to run')
    return trials
