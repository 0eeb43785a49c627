import asyncio
import logging
import os

from dotenv import load_dotenv

from jarvis_live import Actions, GeminiLiveSession, LiveDialogManager, SessionConfig


async def main():
    api_key = os.environ["GEMINI_API_KEY"]

    def _on_status(status):
        print(f"[status] {status.value}")

    def _on_transcript(entry):
        print(f"{entry.speaker.value:>5}: {entry.text}")

    def _on_alarm(label: str):
        print(f"*** ALARM: {label} ***")

    dm = LiveDialogManager(
        session_factory=lambda: GeminiLiveSession(api_key, SessionConfig(voice="Kore")),
        actions=Actions(on_alarm=_on_alarm),
        transcript_path="transcript.jsonl",
        on_status=_on_status,
        on_transcript=_on_transcript,
    )
    if not await dm.start():
        return

    try:
        # talk for a minute, then hang up
        await asyncio.sleep(60)
    finally:
        await dm.stop()
        dm.close()


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
