import logging
import time
from typing import Callable, Optional

from tools import Formatter, REST_TIMER_PRESETS

logger = logging.getLogger(__name__)


class RestTimer:
    """Countdown between sets, advanced by one second per :meth:`tick`."""

    def __init__(self, preset: int = 90) -> None:
        if preset <= 0:
            raise ValueError("preset must be positive")
        self.preset = preset
        self.remaining = preset
        self.running = False

    @property
    def presets(self) -> tuple[int, ...]:
        return REST_TIMER_PRESETS

    def select_preset(self, seconds: int) -> None:
        """Load ``seconds`` and start counting down."""
        if seconds <= 0:
            raise ValueError("preset must be positive")
        self.preset = seconds
        self.remaining = seconds
        self.running = True

    def toggle(self) -> bool:
        if self.remaining <= 0:
            self.running = False
        else:
            self.running = not self.running
        return self.running

    def reset(self) -> None:
        self.remaining = self.preset
        self.running = False

    def tick(self) -> bool:
        """Advance one second. Returns ``True`` when the countdown finishes."""
        if not self.running or self.remaining <= 0:
            return False
        self.remaining -= 1
        if self.remaining <= 0:
            self.remaining = 0
            self.running = False
            logger.info("Rest of %s seconds finished", self.preset)
            return True
        return False

    @property
    def progress(self) -> float:
        """Remaining time as a percentage of the selected preset."""
        return self.remaining / self.preset * 100

    @property
    def display(self) -> str:
        return Formatter.format_time(self.remaining)

    def run(
        self,
        on_tick: Optional[Callable[["RestTimer"], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Block until the countdown completes, calling ``on_tick`` each second."""
        if not self.running:
            self.running = self.remaining > 0
        while self.running:
            sleep(1)
            done = self.tick()
            if on_tick is not None:
                on_tick(self)
            if done:
                break
