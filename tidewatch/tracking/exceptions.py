"""Tidewatch — Exception hierarchy."""


class TidewatchError(Exception):
    """Base exception for all Tidewatch errors."""


class ConfigurationError(TidewatchError):
    """Invalid or missing configuration (e.g. no AISStream API key)."""


class FeedError(TidewatchError):
    """The scheduled-moves feed could not be fetched or parsed."""

    def __init__(self, message: str, *, status_code: int | None = None, url: str = "") -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class VesselInfoError(TidewatchError):
    """The vessel particulars page could not be fetched."""

    def __init__(self, message: str, *, imo: str = "") -> None:
        self.imo = imo
        super().__init__(message)
