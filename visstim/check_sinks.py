import time

from .event_log import EventLog, SHOW_STIM, START, END
from .markers import MarkerSink
from .telemetry import TelemetrySink
from .utils import load_settings, initialize_logger


def main():
    initialize_logger('visstim', 'DEBUG')
    settings = load_settings()
    marker_sink = MarkerSink(settings.get('lsl_stream_name', 'visstim_markers'),
                             settings.get('lsl_stream_type', 'Markers'))
    telemetry = TelemetrySink(settings.get('telemetry_url') or 'ws://localhost:8765',
                              on_rival=lambda msg: print(f'Warning: {msg}')).start()
    log = EventLog()
    log.attach_sink(marker_sink)
    log.attach_sink(telemetry)

    print('Sending 10 events (0.5s interval)...')
    for i in range(10):
        event = log.record(SHOW_STIM, START if i % 2 == 0 else END, trial=i // 2, set_index=0, item_index=0,
                           item_name='TEST')
        print(f'Sent {event.phase}/{event.edge} trial {event.trial} at {event.timestamp:.1f} '
              f'(lsl={"on" if marker_sink.enabled else "off"}, ws={"connected" if telemetry.connected else "down"})')
        time.sleep(0.5)

    log.close()
    telemetry.close()
    print('Done.')


if __name__ == '__main__':
    main()
