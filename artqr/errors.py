"""Error taxonomy shared by the registry, the compositor and the HTTP layer."""


class ArtQRError(Exception):
    """Base class for every error raised on purpose by artqr."""


class InvalidInput(ArtQRError):
    """A required field is missing or malformed. Client error, not retried."""


class NotFound(ArtQRError):
    """The referenced short link does not exist."""

    def __init__(self, link_id: str):
        super().__init__(f"Link not found: {link_id}")
        self.link_id = link_id


class ImageDecodeError(ArtQRError):
    """The background image could not be read."""


class PayloadTooLong(ArtQRError):
    """The payload does not fit in a QR code at the requested EC level."""

    def __init__(self, length: int, ecc: str):
        super().__init__(f"Payload of {length} chars does not fit at EC level {ecc}")
        self.length = length
        self.ecc = ecc


class StorageError(ArtQRError):
    """Unexpected persistence failure. Fatal to the current request."""
