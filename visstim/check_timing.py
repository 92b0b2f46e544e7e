from psychopy import visual, event

from .config import ExperimentConfig
from .display import open_window, PsychoPyRenderer, PsychoPyKeys, PsychoPyClock, TEXT_COLOR
from .event_log import pair_phases
from .scheduler import RunContext, TimelineScheduler
from .stimuli import StimulusItem, StimulusSet


def main():
    config = ExperimentConfig(start_baseline_s=2, end_baseline_s=2, start_fixation_ms=1000, fixation_jitter_ms=200,
                              end_white_ms=1000, countdown_steps=3, num_repeat=2, show_time_ms=2000,
                              show_progress=True)

    win = open_window(fullscreen=False, size=(800, 600))
    items = [StimulusItem(label, visual.TextStim(win, text=label, color=TEXT_COLOR, height=40))
             for label in ('IMAGE A', 'IMAGE B')]
    stim_set = StimulusSet(items, num_repeat=config.num_repeat, show_time_ms=config.show_time_ms)

    print('Press any key to start timing test (ESC during the run to cancel)')
    win.flip()
    event.waitKeys()

    context = RunContext(renderer=PsychoPyRenderer(win), keys=PsychoPyKeys(), clock=PsychoPyClock())
    result = TimelineScheduler(context, config, [stim_set]).run()

    nominal = {
        'Pre-baseline': config.start_baseline_s * 1000,
        'Post-baseline': config.end_baseline_s * 1000,
        'show stim': config.show_time_ms,
        'show post stim': config.end_white_ms,
    }
    print(f'Run {result.status.value}')
    for row in pair_phases(result.events):
        trial = '' if row['trial'] is None else f' trial {row["trial"]}'
        if row['duration_ms'] is None:
            print(f'{row["phase"]}{trial}: interrupted')
            continue
        expected = nominal.get(row['phase'])
        extra = f' (nominal {expected:.0f} ms, error {row["duration_ms"] - expected:+.1f} ms)' if expected else ''
        print(f'{row["phase"]}{trial}: {row["duration_ms"]:.1f} ms{extra}')

    win.close()


if __name__ == '__main__':
    main()
