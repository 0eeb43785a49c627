import json
import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from .turn_state import Emotion

logger = logging.getLogger(__name__)

DEFAULT_TRANSCRIPT_PATH = Path(os.path.expanduser("~/.cache/jarvis_live/transcript.jsonl"))
EMOTION_TAG = re.compile(r"^\[([A-Z]+)\]\s*")


class Speaker(str, Enum):
    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class TranscriptEntry:
    speaker: Speaker
    text: str

    def to_dict(self) -> dict:
        return {"speaker": self.speaker.value, "text": self.text}

    @classmethod
    def from_dict(cls, obj: dict) -> "TranscriptEntry":
        text = obj["text"]
        if not isinstance(text, str) or not text.strip():
            raise ValueError("transcript entry without text")
        return cls(speaker=Speaker(obj["speaker"]), text=text)


def split_emotion_tag(text: str) -> Tuple[Optional[Emotion], str]:
    """
    Strip a leading "[TAG] " from a model fragment.
    Returns (emotion, remainder); emotion is None when there is no tag or the tag is not a known Emotion.
    """
    match = EMOTION_TAG.match(text)
    if not match:
        return None, text
    return Emotion.from_tag(match.group(1)), text[match.end():]


class TranscriptStore:
    """Transcript log persisted as JSON lines, one entry per line, appended after each turn."""

    def __init__(self, path: Union[str, Path] = DEFAULT_TRANSCRIPT_PATH):
        self.path = Path(path)

    def load(self) -> List[TranscriptEntry]:
        if not self.path.is_file():
            return []
        entries = []
        try:
            with self.path.open("r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if line:
                        entries.append(TranscriptEntry.from_dict(json.loads(line)))
        except (OSError, UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"[Transcript] Could not load {self.path} ({e}); starting empty.")
            return []
        return entries

    def append(self, entries: List[TranscriptEntry]) -> None:
        if not entries:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                for entry in entries:
                    f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
        except OSError as e:
            logger.error(f"[Transcript] Could not save to {self.path}: {e}")

    def clear(self) -> None:
        try:
            if self.path.exists():
                self.path.unlink()
        except OSError as e:
            logger.error(f"[Transcript] Could not clear {self.path}: {e}")


class TranscriptAssembler:
    """
    Accumulates streamed input/output transcription fragments for the turn in progress and
    commits them to the ordered transcript when the turn completes.
    """

    def __init__(
        self,
        store: Optional[TranscriptStore] = None,
        on_entry: Optional[Callable[[TranscriptEntry], None]] = None,
        on_interim: Optional[Callable[[Optional[str]], None]] = None,
    ):
        self.store = store
        self.on_entry = on_entry
        self.on_interim = on_interim
        self._entries: List[TranscriptEntry] = store.load() if store else []
        self.input_text = ""
        self.output_text = ""
        self._interim: Optional[str] = None

    @property
    def entries(self) -> List[TranscriptEntry]:
        return list(self._entries)

    @property
    def interim_text(self) -> Optional[str]:
        return self._interim

    def _set_interim(self, text: Optional[str]) -> None:
        if text == self._interim:
            return
        self._interim = text
        if self.on_interim:
            try:
                self.on_interim(text)
            except Exception as e:
                logger.error(f"[InterimCallback] Error: {e}")

    def add_input(self, text: str, suppressed: bool = False) -> bool:
        """Append user speech-to-text. Dropped while the model is speaking or cooling down."""
        if suppressed:
            logger.debug(f"[Transcript] Dropped input fragment during model speech: {text!r}")
            return False
        self.input_text += text
        self._set_interim(self.input_text)
        return True

    def add_output(self, text: str) -> Optional[Emotion]:
        """Append model speech-to-text with its emotion tag stripped; returns the tag's emotion, if any."""
        emotion, clean = split_emotion_tag(text)
        self.output_text += clean
        self._set_interim(self.output_text)
        return emotion

    def complete_turn(self) -> List[TranscriptEntry]:
        full_input = self.input_text.strip()
        full_output = self.output_text.strip()
        new_entries = []
        if full_input:
            new_entries.append(TranscriptEntry(Speaker.USER, full_input))
        if full_output:
            new_entries.append(TranscriptEntry(Speaker.MODEL, full_output))
        self._entries.extend(new_entries)
        if self.store:
            self.store.append(new_entries)
        self.reset_pending()
        for entry in new_entries:
            logger.info(f"[{entry.speaker.value.capitalize()}]: {entry.text}")
            if self.on_entry:
                try:
                    self.on_entry(entry)
                except Exception as e:
                    logger.error(f"[TranscriptCallback] Error: {e}")
        return new_entries

    def reset_pending(self) -> None:
        self.input_text = ""
        self.output_text = ""
        self._set_interim(None)

    def clear(self) -> None:
        """Explicit user action: forget the committed transcript."""
        self._entries = []
        if self.store:
            self.store.clear()
