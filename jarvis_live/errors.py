class JarvisLiveError(Exception):
    """Base for live-session errors."""


class DeviceAcquisitionFailure(JarvisLiveError):
    """Microphone or camera denied or unavailable."""


class RemoteProtocolError(JarvisLiveError):
    """The remote service sent a malformed or unexpected message."""


class RemoteSessionError(JarvisLiveError):
    """The remote session reported an error or could not be opened."""


class RemoteSessionClosed(RemoteSessionError):
    """The remote session is closed or closing."""


class ToolExecutionFailure(JarvisLiveError):
    """A local action failed or was called with unusable arguments."""


class AudioDecodeError(JarvisLiveError):
    """An inbound audio chunk could not be decoded."""
