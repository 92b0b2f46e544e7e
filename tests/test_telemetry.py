"""Unit tests for the websocket telemetry sink, using an in-process fake connection."""

import json
import time
import asyncio

import pytest

from visstim.event_log import EXPORT_FIELDS, EventLog, SHOW_STIM, START, END
from visstim.telemetry import RIVAL_MESSAGE, TelemetrySink, encode_event, is_rival_message

from conftest import FakeClock


class FakeSocket:
    def __init__(self, inbound=(), stay_open=True):
        self.inbound = list(inbound)
        self.stay_open = stay_open
        self.sent = []

    async def send(self, message):
        self.sent.append(message)

    def __aiter__(self):
        return self._messages()

    async def _messages(self):
        while self.inbound or self.stay_open:
            await asyncio.sleep(0.01)
            if self.inbound:
                yield self.inbound.pop(0)


class _Connection:
    def __init__(self, ws):
        self.ws = ws

    async def __aenter__(self):
        return self.ws

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeConnector:
    """Hands out the given sockets in order, then refuses connections."""

    def __init__(self, *sockets):
        self.sockets = list(sockets)
        self.calls = 0

    def __call__(self, url):
        self.calls += 1
        if not self.sockets:
            raise ConnectionRefusedError(f'{url} refused')
        return _Connection(self.sockets.pop(0))


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def events():
    log = EventLog(FakeClock())
    return [
        log.record(SHOW_STIM, START, trial=0, set_index=0, item_index=1, item_name='b.png'),
        log.record(SHOW_STIM, END, trial=0, set_index=0, item_index=1, item_name='b.png'),
    ]


def test_gives_up_after_bounded_retries():
    connector = FakeConnector()
    sink = TelemetrySink('ws://localhost:1', max_retries=3, retry_interval_s=0.01, connect=connector).start()
    sink.join(3)
    assert not sink.running
    assert connector.calls == 4
    assert sink.attempts == 4
    assert not sink.rival_detected


def test_forwards_events_with_send_timestamp(events):
    ws = FakeSocket()
    sink = TelemetrySink('ws://localhost:1', connect=FakeConnector(ws)).start()
    try:
        for event in events:
            sink.send(event)
        assert wait_for(lambda: len(ws.sent) == 2)
        payloads = [json.loads(m) for m in ws.sent]
        assert [p['edge'] for p in payloads] == [START, END]
        assert list(payloads[0].keys()) == list(EXPORT_FIELDS) + ['send_timestamp']
        assert payloads[0]['item_name'] == 'b.png'
        assert sink.connected
    finally:
        sink.close()
    assert not sink.running


def test_rival_message_stops_reconnecting():
    warnings = []
    ws = FakeSocket(inbound=['hello', 'Another instance is connected'])
    connector = FakeConnector(ws, FakeSocket())
    sink = TelemetrySink('ws://localhost:1', retry_interval_s=0.01, on_rival=warnings.append,
                         connect=connector).start()
    sink.join(3)
    assert not sink.running
    assert sink.rival_detected
    assert warnings == ['Another instance is connected']
    assert connector.calls == 1


def test_rival_warning_is_taken_once():
    sink = TelemetrySink('ws://localhost:1', connect=FakeConnector(FakeSocket(inbound=[RIVAL_MESSAGE])))
    assert not sink.take_rival_warning()
    sink.start()
    sink.join(3)
    assert sink.take_rival_warning()
    assert not sink.take_rival_warning()


def test_rival_during_start_prompt_is_seen_before_the_run():
    ws = FakeSocket()
    sink = TelemetrySink('ws://localhost:1', connect=FakeConnector(ws)).start()
    try:
        assert wait_for(lambda: sink.connected)
        # Nothing to warn about when the prompt is shown.
        assert not sink.take_rival_warning()
        ws.inbound.append(RIVAL_MESSAGE)
        sink.join(3)
        # Checked again once the operator starts the run.
        assert sink.take_rival_warning()
    finally:
        sink.close()


def test_retry_counter_resets_after_successful_connection():
    connector = FakeConnector(FakeSocket(stay_open=False))
    sink = TelemetrySink('ws://localhost:1', max_retries=2, retry_interval_s=0.01, connect=connector).start()
    sink.join(3)
    assert not sink.running
    # One good session, then max_retries refused reconnects.
    assert connector.calls == 3


def test_send_before_start_is_ignored(events):
    sink = TelemetrySink('ws://localhost:1', connect=FakeConnector())
    sink.send(events[0])
    sink.close()
    assert not sink.running


def test_event_log_unaffected_by_unreachable_collector(events):
    sink = TelemetrySink('ws://localhost:1', max_retries=0, retry_interval_s=0.01, connect=FakeConnector()).start()
    log = EventLog(FakeClock())
    log.attach_sink(sink)
    for event in events:
        log.append(event)
    log.close()
    sink.join(3)
    assert log.events == tuple(events)


def test_is_rival_message():
    assert is_rival_message(RIVAL_MESSAGE)
    assert is_rival_message(b'  Another Instance Is Connected\n')
    assert not is_rival_message('connected')


def test_encode_event_adds_send_timestamp(events):
    payload = json.loads(encode_event(events[0]))
    assert payload['phase'] == SHOW_STIM
    assert payload['send_timestamp'] > 0
