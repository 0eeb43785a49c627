from pathlib import Path

from setuptools import find_packages, setup


def read_requirements() -> list[str]:
    req_file = Path(__file__).parent / "requirements.txt"
    if not req_file.is_file():
        return []
    lines = req_file.read_text().splitlines()
    return [ln.strip() for ln in lines if ln.strip() and not ln.strip().startswith("#")]


setup(
    name="jarvis-live",
    version="0.1.0",
    description="Real-time voice session engine for a live multimodal assistant: streamed mic audio, "
                "gapless playback with barge-in, turn state, transcripts and local tool calls.",
    packages=find_packages(include=["jarvis_live", "jarvis_live.*"]),
    python_requires=">=3.9",
    install_requires=read_requirements(),
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": [
            "jarvis-live=jarvis_live.dialogue_manager:cli",
        ],
    },
)
