import json
import logging

try:
    from pylsl import StreamInfo, StreamOutlet, local_clock
    LSL_AVAILABLE = True
except Exception:
    LSL_AVAILABLE = False

logger = logging.getLogger(__name__)


class MarkerSink:
    """Mirror timeline events onto an LSL string marker stream.

    Each event becomes one JSON-encoded sample. When pylsl or its native
    library is missing the sink stays disabled and drops every event.
    """

    def __init__(self, name: str = 'visstim_markers', stream_type: str = 'Markers'):
        self.enabled = False
        self.outlet = None
        if not LSL_AVAILABLE:
            logger.warning('pylsl is not available; LSL markers disabled')
            return
        try:
            info = StreamInfo(name=name, type=stream_type, channel_count=1, nominal_srate=0,
                              channel_format='string', source_id=f'{name}_{stream_type}')
            self.outlet = StreamOutlet(info)
            self.enabled = True
        except Exception as e:
            logger.warning(f'Failed to create LSL outlet: {e}')

    def push(self, marker: str):
        if not self.enabled:
            return None
        ts = local_clock()
        try:
            self.outlet.push_sample([marker], timestamp=ts)
        except Exception as e:
            logger.warning(f'LSL push failed: {e}')
            return None
        return ts

    def send(self, event):
        return self.push(json.dumps(event.to_dict()))

    def __repr__(self):
        return f'MarkerSink(enabled={self.enabled})'
