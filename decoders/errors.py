"""Error types raised while decoding NCM containers.

Every failure is fatal for the container being decoded. Errors carry a
``kind`` tag and, once they pass through the decoder, the ``stage`` they
happened in, so a caller can report e.g. ``[metadata] Truncated: ...``.
"""


class NCMError(ValueError):
    """Base class for all decode failures."""

    kind = "NCMError"

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.kind}: {self.message}"
        return f"{self.kind}: {self.message}"


class FormatError(NCMError):
    """Structural problem with the container layout."""

    kind = "FormatError"


class BadMagicError(FormatError):
    kind = "BadMagic"


class TruncatedError(FormatError):
    kind = "Truncated"

    def __init__(self, expected: int, actual: int, stage: str | None = None):
        super().__init__(f"expected {expected} bytes, got {actual}", stage)
        self.expected = expected
        self.actual = actual


class InvalidMetadataError(FormatError):
    kind = "InvalidMetadata"


class CryptoError(NCMError):
    """Block cipher input could not be decrypted."""

    kind = "CryptoError"


class InvalidLengthError(CryptoError):
    kind = "InvalidLength"


class InvalidPaddingError(CryptoError):
    kind = "InvalidPadding"
