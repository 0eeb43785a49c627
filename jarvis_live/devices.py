import logging
from typing import Optional

from .errors import DeviceAcquisitionFailure

logger = logging.getLogger(__name__)


def list_sound_devices():
    """Lists all available sound devices on the system."""
    import sounddevice as sd

    devices = sd.query_devices()
    for idx, device in enumerate(devices):
        print(f"[{idx:2d}]: {device['name']} (in: {device['max_input_channels']}, out: {device['max_output_channels']})")


def log_sound_devices():
    try:
        import sounddevice as sd

        devs = sd.query_devices()
        for i, d in enumerate(devs):
            logger.debug(f"[{i:2d}] {d['name']}  (in:{d['max_input_channels']}, out:{d['max_output_channels']})")
    except Exception as e:
        logger.warning(f"Could not query audio devices: {e}")


def native_input_rate(device: Optional[int] = None) -> int:
    """Default sample rate of the input device (the rate frames are captured at)."""
    try:
        import sounddevice as sd

        info = sd.query_devices(device, "input")
    except Exception as e:
        raise DeviceAcquisitionFailure(f"no usable input device ({device}): {e}") from e
    if info.get("max_input_channels", 0) <= 0:
        raise DeviceAcquisitionFailure(f"device {info.get('name')} has no input channels")
    return int(info["default_samplerate"])


if __name__ == "__main__":
    list_sound_devices()
