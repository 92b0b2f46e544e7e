"""Best-effort real-time mirror of the event log over a websocket.

The sink owns a background thread running an asyncio loop. Events handed to
``send`` are stamped with a send time, serialized and queued for the loop;
``send`` itself never blocks or raises. When the connection drops the sink
retries a bounded number of times and then gives up quietly. If the
collector reports that another instance is already connected, the sink stops
for good and calls ``on_rival`` so the operator can be warned.
"""

import json
import asyncio
import logging
import threading
from typing import Callable, Optional

import websockets
from websockets.exceptions import WebSocketException

from .utils import epoch_ms

logger = logging.getLogger(__name__)

DEFAULT_URL = 'ws://localhost:8765'
RIVAL_MESSAGE = 'another instance is connected'
OUTBOX_SIZE = 1000


def is_rival_message(message) -> bool:
    if isinstance(message, (bytes, bytearray)):
        message = message.decode('utf-8', errors='replace')
    return message.strip().lower() == RIVAL_MESSAGE


def encode_event(event) -> str:
    payload = event.to_dict()
    payload['send_timestamp'] = epoch_ms()
    return json.dumps(payload)


class TelemetrySink:
    def __init__(self, url: str = DEFAULT_URL, max_retries: int = 5, retry_interval_s: float = 2.0,
                 on_rival: Optional[Callable[[str], None]] = None, connect=None):
        self.url = url
        self.max_retries = max_retries
        self.retry_interval_s = retry_interval_s
        self.on_rival = on_rival
        self._connect = connect if connect is not None else websockets.connect
        self.connected = False
        self.rival_detected = False
        self._rival_warned = False
        self._warn_lock = threading.Lock()
        self.attempts = 0
        self.dropped = 0
        self._loop = None
        self._task = None
        self._thread = None
        self._outbox = None

    def start(self):
        if self._thread is not None:
            return self
        self._loop = asyncio.new_event_loop()
        self._outbox = asyncio.Queue(maxsize=OUTBOX_SIZE)
        self._task = self._loop.create_task(self._main())
        self._thread = threading.Thread(target=self._run_loop, name='telemetry', daemon=True)
        self._thread.start()
        return self

    def close(self, timeout: float = 2.0):
        thread, loop = self._thread, self._loop
        if thread is None:
            return
        if thread.is_alive():
            loop.call_soon_threadsafe(self._task.cancel)
        thread.join(timeout)
        self._thread = None

    def join(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)

    def take_rival_warning(self) -> bool:
        """True the first time it is called after a rival instance was detected."""
        with self._warn_lock:
            if not self.rival_detected or self._rival_warned:
                return False
            self._rival_warned = True
            return True

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def send(self, event):
        if not self.running:
            return
        try:
            self._loop.call_soon_threadsafe(self._enqueue, encode_event(event))
        except RuntimeError:
            # Loop already closed.
            pass

    def _enqueue(self, message: str):
        try:
            self._outbox.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1

    def _run_loop(self):
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._task)
        except asyncio.CancelledError:
            pass
        finally:
            self.connected = False
            self._loop.close()

    async def _main(self):
        retries = 0
        while True:
            self.attempts += 1
            try:
                async with self._connect(self.url) as ws:
                    self.connected = True
                    retries = 0
                    logger.info(f'Telemetry connected to {self.url}')
                    await self._session(ws)
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.debug(f'Telemetry connection to {self.url} failed: {e}')
            finally:
                self.connected = False

            if self.rival_detected:
                logger.warning('Another instance is connected to the telemetry collector; not reconnecting')
                return
            if retries >= self.max_retries:
                logger.warning(f'Telemetry gave up after {retries} retries; events are kept in the local log only')
                return
            retries += 1
            await asyncio.sleep(self.retry_interval_s)

    async def _session(self, ws):
        sender = asyncio.ensure_future(self._pump(ws))
        try:
            async for message in ws:
                if is_rival_message(message):
                    self._handle_rival(message)
                    break
                logger.debug(f'Telemetry message ignored: {message!r}')
        finally:
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            except (OSError, WebSocketException) as e:
                logger.debug(f'Telemetry send failed: {e}')

    async def _pump(self, ws):
        while True:
            message = await self._outbox.get()
            await ws.send(message)

    def _handle_rival(self, message):
        self.rival_detected = True
        if self.on_rival is not None:
            try:
                self.on_rival(message if isinstance(message, str) else message.decode('utf-8', errors='replace'))
            except Exception as e:
                logger.warning(f'Rival instance callback failed: {e}')
