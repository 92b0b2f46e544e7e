import os
import json
import time
import logging
from pathlib import Path
from datetime import datetime


class ConfigurationError(ValueError):
    pass


def default_settings_path():
    return os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'config', 'settings.json'))


def load_settings(path=None):
    settings_path = os.path.abspath(path) if path else default_settings_path()
    with open(settings_path, 'r', encoding='utf-8') as f:
        return json.load(f)


def _coerce(key: str, raw: str, current):
    if isinstance(current, bool):
        lowered = raw.strip().lower()
        if lowered in ('yes', 'true', 't', '1'):
            return True
        if lowered in ('no', 'false', 'f', '0'):
            return False
        raise ConfigurationError(f'Boolean value expected for {key!r}, got {raw!r}')
    if isinstance(current, (int, float)) or current is None:
        if current is None and raw.strip().lower() in ('', 'none', 'null'):
            return None
        try:
            value = float(raw)
        except ValueError:
            if current is None:
                return raw
            raise ConfigurationError(f'Numeric value expected for {key!r}, got {raw!r}') from None
        if isinstance(current, int) or (current is None and value.is_integer()):
            return int(value) if value.is_integer() else value
        return value
    return raw


def apply_overrides(params: dict, overrides) -> dict:
    """Return a copy of ``params`` updated from ``key=value`` strings.

    Values are coerced to the type of the existing entry, so only known keys
    can be overridden.
    """
    updated = dict(params)
    for item in overrides or []:
        if '=' not in item:
            raise ConfigurationError(f'Expected key=value, got {item!r}')
        key, raw = item.split('=', 1)
        key = key.strip()
        if key not in updated:
            raise ConfigurationError(f'Unknown setting {key!r}')
        updated[key] = _coerce(key, raw, updated[key])
    return updated


def initialize_logger(name, level='INFO', log_file=None):
    _level = getattr(logging, str(level).upper(), logging.INFO)
    logger = logging.getLogger(name)

    formatter = logging.Formatter(
        '%(asctime)s - [%(levelname)-7s] - [%(threadName)s] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )
    if not logger.handlers:
        logger.setLevel(_level)
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(_level)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, mode='w')
            file_handler.setLevel(_level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
    logger.debug(f'Logger initialized for {name} with level {_level}. Log file: {log_file or "None"}')
    return logger


class SystemClock:
    """Epoch milliseconds anchored once, then advanced by ``perf_counter``.

    Readings never go backwards even if the wall clock is adjusted mid-run.
    """

    def __init__(self):
        self._epoch_origin_ms = time.time() * 1000.0
        self._perf_origin = time.perf_counter()

    def now_ms(self) -> float:
        return self._epoch_origin_ms + (time.perf_counter() - self._perf_origin) * 1000.0

    def sleep(self, seconds: float):
        if seconds > 0:
            time.sleep(seconds)


def epoch_ms() -> float:
    return time.time() * 1000.0


def session_stamp() -> str:
    return datetime.now().strftime('%Y%m%d_%H%M%S')


def get_image_list(stim_dir: str):
    if not os.path.isdir(stim_dir):
        raise ConfigurationError(f'Stimulus directory not found: {stim_dir}')
    valid_exts = {'.png', '.jpg', '.jpeg', '.bmp', '.gif'}
    images = [os.path.join(stim_dir, f) for f in os.listdir(stim_dir) if os.path.splitext(f)[1].lower() in valid_exts]
    images.sort()
    return images
