import time

from psychopy import visual, core, event
from psychopy.hardware import keyboard

BACKGROUND = [1, 1, 1]
TEXT_COLOR = [-1, -1, -1]

TEXT_STYLES = {
    'large': {'font': 'Arial', 'height': 64},
    'huge': {'font': 'Arial', 'height': 86},
}


def open_window(fullscreen: bool = True, size=(1280, 800)) -> visual.Window:
    return visual.Window(fullscr=fullscreen, size=size, color=BACKGROUND, units='pix', allowGUI=not fullscreen)


def fit_image(win: visual.Window, image_stim: visual.ImageStim, margin: float = 0.95):
    """Scale the image down to fit inside the window and center it."""
    w, h = win.size
    orig_w, orig_h = image_stim.size
    scale = min(1.0, (w * margin) / orig_w, (h * margin) / orig_h)
    image_stim.size = (orig_w * scale, orig_h * scale)
    image_stim.pos = (0, 0)
    return image_stim


class PsychoPyRenderer:
    """Draws text labels and preloaded stimuli on a psychopy window.

    Everything currently shown is redrawn on each change, so a label and an
    image can share the screen until ``clear`` is called.
    """

    def __init__(self, win: visual.Window):
        self.win = win
        self._shown = []

    @property
    def size(self):
        return tuple(self.win.size)

    def load_image(self, path: str) -> visual.ImageStim:
        return fit_image(self.win, visual.ImageStim(self.win, image=path, size=None, units='pix'))

    def show_text(self, label: str, style: str = 'large') -> visual.TextStim:
        spec = TEXT_STYLES[style]
        stim = visual.TextStim(self.win, text=label, color=TEXT_COLOR, font=spec['font'], height=spec['height'],
                               pos=(0, 0), units='pix', wrapWidth=self.win.size[0] * 0.9)
        self._shown.append(stim)
        self._refresh()
        return stim

    def show_object(self, handle):
        self._shown.append(handle)
        self._refresh()

    def clear(self):
        self._shown = []
        self.win.flip()

    def _refresh(self):
        for stim in self._shown:
            stim.draw()
        self.win.flip()


class PsychoPyKeys:
    def __init__(self, kb=None):
        self.kb = kb if kb is not None else keyboard.Keyboard()

    def poll(self):
        return [k.name for k in self.kb.getKeys(waitRelease=False)]

    def clear(self):
        self.kb.clearEvents()


class PsychoPyClock:
    """Epoch milliseconds taken from psychopy's monotonic clock."""

    def __init__(self):
        self._epoch_origin_ms = time.time() * 1000.0
        self._core_origin = core.getTime()

    def now_ms(self) -> float:
        return self._epoch_origin_ms + (core.getTime() - self._core_origin) * 1000.0

    def sleep(self, seconds: float):
        if seconds > 0:
            core.wait(seconds, hogCPUperiod=min(seconds, 0.002))


def show_message(win: visual.Window, text: str, keys=None):
    """Show a message until one of ``keys`` (any key if None) is pressed."""
    msg = visual.TextStim(win, text=text, color=TEXT_COLOR, height=32, wrapWidth=win.size[0] * 0.8, units='pix')
    msg.draw()
    win.flip()
    event.clearEvents()
    pressed = event.waitKeys(keyList=keys)
    win.flip()
    return pressed[0] if pressed else None


def show_warning(win: visual.Window, text: str):
    return show_message(win, f'WARNING\n\n{text}\n\nPress any key to continue.')
