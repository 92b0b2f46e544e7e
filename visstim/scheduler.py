"""Timeline scheduler for one experiment run.

The run is a chain of timed phases:

    Idle -> Countdown -> Pre-baseline -> trials -> Post-baseline -> Completed

and each trial is a fixation, a stimulus and a post-stimulus interval. Every
phase renders its display, records a start event and arms a single pending
suspension whose callback records the end event and enters the next phase.
``run`` drives the chain from the calling thread and polls the keyboard
while a suspension is pending.

Cancellation drops the pending suspension, so no further phase is entered.
The phase that was active at that moment keeps its start event without a
matching end event. Completed and cancelled runs both export the log.
"""

import os
import random
import logging
import threading
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

from .event_log import (
    EventLog, TimelineEvent, PRE_BASELINE, POST_BASELINE, SHOW_FIXATION, SHOW_STIM,
    SHOW_POST_STIM, KEYDOWN, START, END,
)
from .order import Trial, plan_trials
from .utils import ConfigurationError, SystemClock, session_stamp

logger = logging.getLogger(__name__)

POLL_INTERVAL_MS = 5.0
BASELINE_LABEL = 'Please relax and keep your eyes on the screen'
FIXATION_LABEL = '+'


class Phase(Enum):
    IDLE = 'idle'
    COUNTDOWN = 'countdown'
    PRE_BASELINE = 'pre_baseline'
    FIXATION = 'fixation'
    STIMULUS = 'stimulus'
    POST_STIMULUS = 'post_stimulus'
    POST_BASELINE = 'post_baseline'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


TERMINAL = (Phase.IDLE, Phase.COMPLETED, Phase.CANCELLED)


class RenderError(RuntimeError):
    """The renderer failed while the timeline was running.

    ``result`` holds the run as it stood when rendering failed.
    """

    def __init__(self, message, result=None):
        super().__init__(message)
        self.result = result


@dataclass
class RunContext:
    renderer: Any
    keys: Any = None
    clock: Any = field(default_factory=SystemClock)
    sinks: list = field(default_factory=list)
    export_dir: Optional[str] = None


@dataclass
class RunResult:
    status: Phase
    trials: List[Trial]
    events: Sequence[TimelineEvent]
    export: str
    export_path: Optional[str] = None
    error: Optional[BaseException] = None


@dataclass
class _Suspension:
    due_ms: float
    callback: Callable[[], None]
    cancelled: bool = False


class TimelineScheduler:
    def __init__(self, context: RunContext, config, sets, rng=None):
        self.context = context
        self.config = config
        self.sets = list(sets)
        self.rng = rng if rng is not None else random.Random(config.seed)
        self._state = Phase.IDLE
        self._pending: Optional[_Suspension] = None
        self._lock = threading.RLock()
        self._trials: List[Trial] = []
        self._trial_index: Optional[int] = None
        self.log: Optional[EventLog] = None
        self.result: Optional[RunResult] = None

    @property
    def state(self) -> Phase:
        return self._state

    @property
    def current_trial(self):
        """(ordinal, set_index, item_index) of the trial on screen, or None."""
        if self._trial_index is None or self._trial_index >= len(self._trials):
            return None
        trial = self._trials[self._trial_index]
        return self._trial_index, trial.set_index, trial.item_index

    # ------------------------
    # Public interface
    # ------------------------

    def run(self, trials: Optional[Sequence[Trial]] = None) -> RunResult:
        """Run the whole timeline and return once it completes or is cancelled.

        Configuration problems raise ConfigurationError before anything is
        shown. A renderer failure raises RenderError after cleanup; any other
        error also ends the run as cancelled before it propagates.
        """
        if self._state not in TERMINAL:
            raise RuntimeError('A run is already in progress')
        if trials is None:
            trials = plan_trials(self.sets, self.config, rng=self.rng)
        else:
            trials = list(trials)
            self._check_trials(trials)

        self._trials = list(trials)
        self._trial_index = None
        self.result = None
        self.log = EventLog(self.context.clock)
        for sink in self.context.sinks:
            self.log.attach_sink(sink)
        for stim_set in self.sets:
            stim_set.lock()

        logger.info(f'Starting run with {len(self._trials)} trials from {len(self.sets)} stimulus sets')
        self._state = Phase.COUNTDOWN
        try:
            self._step(lambda: self._countdown(self.config.countdown_steps))
            while True:
                with self._lock:
                    pending = self._pending
                if pending is None:
                    break
                self._wait(pending)
                with self._lock:
                    if pending.cancelled or self._pending is not pending:
                        continue
                    self._pending = None
                self._step(pending.callback)
        except RenderError as e:
            e.result = self._finish(Phase.CANCELLED, error=e.__cause__ or e)
            logger.error(f'Run aborted: {e}')
            raise
        except BaseException as e:
            self._finish(Phase.CANCELLED, error=e)
            logger.error(f'Run aborted: {e!r}')
            raise
        return self._finish(self._state)

    def cancel(self):
        """Stop the run before the next phase starts.

        Safe to call at any time and from any thread; a no-op when no run is
        active.
        """
        with self._lock:
            if self._state in TERMINAL:
                return
            logger.info(f'Run cancelled during {self._state.value}')
            self._state = Phase.CANCELLED
            if self._pending is not None:
                self._pending.cancelled = True
                self._pending = None

    # ------------------------
    # Driver
    # ------------------------

    def _check_trials(self, trials):
        if not trials:
            raise ConfigurationError('Trial sequence is empty; nothing to run')
        for stim_set in self.sets:
            stim_set.validate()
        self.config.validate()
        for trial in trials:
            if not (0 <= trial.set_index < len(self.sets)) or \
                    not (0 <= trial.item_index < len(self.sets[trial.set_index].items)):
                raise ConfigurationError(f'Trial {trial} does not refer to a loaded stimulus')

    def _step(self, callback):
        with self._lock:
            if self._state is Phase.CANCELLED:
                return
            callback()

    def _after(self, delay_ms: float, callback):
        with self._lock:
            if self._state is Phase.CANCELLED:
                return
            self._pending = _Suspension(self.context.clock.now_ms() + delay_ms, callback)

    def _wait(self, pending: _Suspension):
        clock = self.context.clock
        while not pending.cancelled:
            self._poll_keys()
            if pending.cancelled:
                break
            remaining = pending.due_ms - clock.now_ms()
            if remaining <= 0:
                break
            clock.sleep(min(remaining, POLL_INTERVAL_MS) / 1000.0)

    def _poll_keys(self):
        keys = self.context.keys
        if keys is None:
            return
        for name in keys.poll():
            with self._lock:
                if self._state is Phase.CANCELLED:
                    return
                if name == self.config.cancel_key:
                    self.cancel()
                else:
                    self.log.record(KEYDOWN, None, key=name)

    def _finish(self, status: Phase, error=None) -> RunResult:
        with self._lock:
            if self._pending is not None:
                self._pending.cancelled = True
                self._pending = None
            self._state = status
        if status is Phase.CANCELLED:
            try:
                self.context.renderer.clear()
            except Exception as e:
                logger.warning(f'Failed to clear display after run: {e}')
        for stim_set in self.sets:
            stim_set.unlock()
        self.log.close()

        export = self.log.export('json')
        export_path = None
        if self.context.export_dir:
            os.makedirs(self.context.export_dir, exist_ok=True)
            export_path = os.path.join(self.context.export_dir, f'vis_stim_events_{session_stamp()}.json')
            self.log.save(export_path)
            logger.info(f'Event log written to {export_path}')
        self.result = RunResult(status, list(self._trials), self.log.events, export, export_path, error)
        logger.info(f'Run finished: {status.value}, {len(self.log)} events')
        return self.result

    # ------------------------
    # Rendering
    # ------------------------

    def _render(self, method: str, *args):
        try:
            return getattr(self.context.renderer, method)(*args)
        except Exception as e:
            raise RenderError(f'Renderer failed in {method}: {e}') from e

    def _trial_context(self, index: int) -> dict:
        trial = self._trials[index]
        item = self.sets[trial.set_index].items[trial.item_index]
        return {'trial': index, 'set_index': trial.set_index, 'item_index': trial.item_index, 'item_name': item.name}

    # ------------------------
    # Phases
    # ------------------------

    def _countdown(self, step: int):
        self._state = Phase.COUNTDOWN
        self._render('clear')
        if step <= 0:
            self._pre_baseline()
            return
        self._render('show_text', str(step), 'huge')
        self._after(self.config.countdown_interval_ms, lambda: self._countdown(step - 1))

    def _pre_baseline(self):
        duration_ms = self.config.start_baseline_s * 1000.0
        if duration_ms <= 0:
            self._trial(0)
            return
        self._state = Phase.PRE_BASELINE
        self._render('show_text', BASELINE_LABEL, 'large')
        self.log.record(PRE_BASELINE, START)
        self._after(duration_ms, self._end_pre_baseline)

    def _end_pre_baseline(self):
        self.log.record(PRE_BASELINE, END)
        self._render('clear')
        self._trial(0)

    def _trial(self, index: int):
        if index >= len(self._trials):
            self._trial_index = None
            self._post_baseline()
            return
        self._trial_index = index
        jitter = self.rng.uniform(0, self.config.fixation_jitter_ms) if self.config.fixation_jitter_ms > 0 else 0.0
        duration_ms = self.config.start_fixation_ms + jitter
        if duration_ms <= 0:
            self._stimulus(index)
            return
        self._state = Phase.FIXATION
        self._render('clear')
        self._render('show_text', FIXATION_LABEL, 'huge')
        context = self._trial_context(index)
        self.log.record(SHOW_FIXATION, START, **context)

        def end_fixation():
            self.log.record(SHOW_FIXATION, END, **context)
            self._stimulus(index)

        self._after(duration_ms, end_fixation)

    def _stimulus(self, index: int):
        self._state = Phase.STIMULUS
        trial = self._trials[index]
        stim_set = self.sets[trial.set_index]
        self._render('clear')
        self._render('show_object', stim_set.items[trial.item_index].handle)
        context = self._trial_context(index)
        self.log.record(SHOW_STIM, START, **context)

        def end_stimulus():
            self.log.record(SHOW_STIM, END, **context)
            self._post_stimulus(index)

        self._after(stim_set.show_time_ms, end_stimulus)

    def _post_stimulus(self, index: int):
        if self.config.end_white_ms <= 0:
            self._trial(index + 1)
            return
        self._state = Phase.POST_STIMULUS
        self._render('clear')
        if self.config.show_progress:
            self._render('show_text', f'{index + 1}/{len(self._trials)}', 'large')
        context = self._trial_context(index)
        self.log.record(SHOW_POST_STIM, START, **context)

        def end_post_stimulus():
            self.log.record(SHOW_POST_STIM, END, **context)
            self._trial(index + 1)

        self._after(self.config.end_white_ms, end_post_stimulus)

    def _post_baseline(self):
        duration_ms = self.config.end_baseline_s * 1000.0
        if duration_ms <= 0:
            self._complete()
            return
        self._state = Phase.POST_BASELINE
        self._render('clear')
        self._render('show_text', BASELINE_LABEL, 'large')
        self.log.record(POST_BASELINE, START)
        self._after(duration_ms, self._end_post_baseline)

    def _end_post_baseline(self):
        self.log.record(POST_BASELINE, END)
        self._complete()

    def _complete(self):
        self._render('clear')
        self._state = Phase.COMPLETED
