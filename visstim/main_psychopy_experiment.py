import os
import sys
import argparse

from psychopy import data

from .config import build_config
from .display import open_window, PsychoPyRenderer, PsychoPyKeys, PsychoPyClock, show_message, show_warning
from .markers import MarkerSink
from .scheduler import RunContext, TimelineScheduler, RenderError
from .stimuli import load_stimulus_sets
from .telemetry import TelemetrySink
from .utils import ConfigurationError, load_settings, initialize_logger


def arguments_parser():
    parser = argparse.ArgumentParser(description='Timed visual stimulus presentation')
    parser.add_argument('set_dirs', nargs='*', help='One directory of images per stimulus set')
    parser.add_argument('--settings', default=None, help='Path to settings.json')
    parser.add_argument('--set', dest='overrides', action='append', default=[], metavar='KEY=VALUE',
                        help='Override an experiment parameter, e.g. --set start_baseline_s=30')
    parser.add_argument('--seed', type=int, default=None, help='Seed for trial order and fixation jitter')
    parser.add_argument('--windowed', action='store_true', help='Run in a window instead of full screen')
    parser.add_argument('--no-telemetry', action='store_true', help='Do not stream events to the collector')
    parser.add_argument('--log-level', default='INFO', help='Logging level')
    return parser


def open_sinks(settings: dict, use_telemetry: bool):
    sinks = [MarkerSink(settings.get('lsl_stream_name', 'visstim_markers'), settings.get('lsl_stream_type', 'Markers'))]
    telemetry = None
    url = settings.get('telemetry_url')
    if use_telemetry and url:
        telemetry = TelemetrySink(
            url,
            max_retries=int(settings.get('telemetry_max_retries', 5)),
            retry_interval_s=float(settings.get('telemetry_retry_interval_ms', 2000)) / 1000.0,
        ).start()
        sinks.append(telemetry)
    return sinks, telemetry


def warn_if_rival(win, telemetry, text):
    if telemetry is not None and telemetry.take_rival_warning():
        show_warning(win, text)


def run_experiment(argv=None):
    args = arguments_parser().parse_args(argv)
    logger = initialize_logger('visstim', args.log_level)

    try:
        settings = load_settings(args.settings)
        config = build_config(settings, args.overrides, args.seed)
    except (OSError, ValueError) as e:
        print(f'Error: Invalid settings: {e}')
        return 1

    entries = args.set_dirs or settings.get('stimulus_sets', [])
    if not entries:
        print('Error: No stimulus sets given. Pass one image directory per set.')
        return 1

    # Telemetry connects at process start, before the window opens.
    sinks, telemetry = open_sinks(settings, not args.no_telemetry)

    project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
    data_dir = settings.get('data_dir', 'data')
    if not os.path.isabs(data_dir):
        data_dir = os.path.join(project_root, data_dir)
    session_dir = os.path.join(data_dir, data.getDateStr(format='%Y%m%d%H%M%S'))

    win = open_window(fullscreen=settings.get('fullscreen', True) and not args.windowed)
    renderer = PsychoPyRenderer(win)
    try:
        try:
            sets = load_stimulus_sets(entries, renderer.load_image, num_repeat=config.num_repeat,
                                      show_time_ms=config.show_time_ms)
        except (ConfigurationError, OSError) as e:
            print(f'Error: Failed to load stimulus sets: {e}')
            return 1
        for i, stim_set in enumerate(sets):
            logger.info(f'Set {i + 1}: {len(stim_set)} stimulus, repeat {stim_set.num_repeat}, '
                        f'{stim_set.show_time_ms} ms each')

        rival_text = ('Another instance is already connected to the telemetry collector.\n'
                      'Events will not be streamed from this instance.')
        warn_if_rival(win, telemetry, rival_text)
        show_message(win, 'Press SPACE to start.', keys=['space'])
        # The rival may have connected while the operator was at the start prompt.
        warn_if_rival(win, telemetry, rival_text)

        keys = PsychoPyKeys()
        keys.clear()
        context = RunContext(renderer=renderer, keys=keys, clock=PsychoPyClock(), sinks=sinks,
                             export_dir=session_dir)
        scheduler = TimelineScheduler(context, config, sets)
        try:
            result = scheduler.run()
        except ConfigurationError as e:
            print(f'Error: {e}')
            return 1
        except RenderError as e:
            print(f'Error: The run was stopped because a stimulus could not be displayed: {e}')
            if e.result is not None and e.result.export_path:
                print(f'Partial event log saved to {e.result.export_path}')
            return 1

        print(f'Run {result.status.value}: {len(result.events)} events')
        print(f'Event log saved to {result.export_path}')
        warn_if_rival(win, telemetry, 'Another instance took over the telemetry collector during this run.\n'
                                      'The saved event log is complete.')
    finally:
        win.close()
        if telemetry is not None:
            telemetry.close()
    return 0


def main():
    sys.exit(run_experiment())


if __name__ == '__main__':
    main()
