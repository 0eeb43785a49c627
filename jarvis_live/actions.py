import logging
import random
import threading
import time
import webbrowser
from typing import Callable, List, Optional
from urllib.parse import quote_plus

logger = logging.getLogger(__name__)

JOKES = [
    "Why is a marriage like a public toilet? The ones outside are desperate to get in, and the ones inside are desperate to get out.",
    "Ek ladka ladki ko ched raha tha. Ladki: 'Bhaiya, aapki behen nahi hai kya?' Ladka: 'Hai, par abhi ghar pe hai... aap free ho kya?'",
    "Patient: 'Doctor, main har cheez bhool jaata hoon.' Doctor: 'Aisa kab se ho raha hai?' Patient: 'Kya kab se ho raha hai?'",
    "A man asks a farmer, 'Why is your bull running so fast?' The farmer replies, 'He sees you're holding two red flags.' "
    "The man says, 'But I'm not!' The farmer says, 'Yeah, but the bull doesn't know that.'",
]


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'s' if n > 1 else ''}"


def describe_delay(delay_in_seconds: float) -> str:
    minutes = int(delay_in_seconds // 60)
    seconds = delay_in_seconds - minutes * 60
    seconds = int(seconds) if float(seconds).is_integer() else round(seconds, 1)
    parts = []
    if minutes > 0:
        parts.append(_plural(minutes, "minute"))
    if seconds > 0:
        parts.append(_plural(seconds, "second"))
    return " and ".join(parts) or f"{delay_in_seconds} seconds"


class Actions:
    """Local side effects the remote model can ask for."""

    def __init__(
        self,
        open_url: Callable[[str], object] = webbrowser.open_new_tab,
        on_alarm: Optional[Callable[[str], None]] = None,
        clock: Callable[[], time.struct_time] = time.localtime,
    ):
        self.open_url = open_url
        self.on_alarm = on_alarm
        self.clock = clock
        self._alarms: List[threading.Timer] = []

    def search_web(self, query: str) -> str:
        self.open_url(f"https://www.google.com/search?q={quote_plus(query)}")
        return f'Searching Google for "{query}".'

    def play_song_on_youtube(self, query: str) -> str:
        self.open_url(f"https://www.youtube.com/results?search_query={quote_plus(query)}")
        return f'Searching YouTube for "{query}".'

    def set_alarm(self, delay_in_seconds: float, label: str = "Alarm") -> str:
        if isinstance(delay_in_seconds, bool) or not isinstance(delay_in_seconds, (int, float)) or delay_in_seconds <= 0:
            return "I can only set alarms for a positive number of seconds."
        timer = threading.Timer(delay_in_seconds, self._ring, args=(label,))
        timer.daemon = True
        self._alarms.append(timer)
        timer.start()
        return f'OK, I\'ve set an alarm for "{label}" to go off in {describe_delay(delay_in_seconds)}.'

    def _ring(self, label: str) -> None:
        logger.warning(f"[Alarm] ALARM: {label}")
        self._alarms = [t for t in self._alarms if t.is_alive() and t is not threading.current_thread()]
        if self.on_alarm:
            try:
                self.on_alarm(label)
            except Exception as e:
                logger.error(f"[Alarm] Callback error: {e}")

    def get_current_time(self) -> str:
        return f"The current time is {time.strftime('%H:%M', self.clock())}."

    def tell_joke(self) -> str:
        return random.choice(JOKES)

    @property
    def pending_alarms(self) -> int:
        return sum(1 for t in self._alarms if t.is_alive())

    def close(self) -> None:
        for timer in self._alarms:
            timer.cancel()
        self._alarms = []
