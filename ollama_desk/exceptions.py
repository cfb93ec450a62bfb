class ChatClientError(Exception):
    """Raised when the model server returns something the client cannot use."""


class SpeechDeviceError(Exception):
    """Raised when the speech device fails to synthesize or play audio."""


__all__ = ["ChatClientError", "SpeechDeviceError"]
