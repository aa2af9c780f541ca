"""
Domain errors raised by the analytics services and the storage/ingestion
collaborators. Routes never catch these; they are mapped to HTTP status
codes by the exception handlers registered in main.py.
"""


class AnalyticsError(Exception):
    """Base class for errors surfaced by the analytics layer."""
    status_code = 500


class PropertyNotFound(AnalyticsError):
    """The requested subject property does not exist."""
    status_code = 404

    def __init__(self, bbl: str):
        self.bbl = bbl
        super().__init__(f"Property not found: {bbl}")


class InvalidParameter(AnalyticsError):
    """A parameter that cannot be dropped silently (e.g. unknown heatmap metric)."""
    status_code = 400

    def __init__(self, name: str, value, message: str | None = None):
        self.name = name
        self.value = value
        super().__init__(message or f"Invalid value for {name}: {value!r}")


class UpstreamFailure(AnalyticsError):
    """Storage or Open Data API failure. Never turned into an empty result."""
    status_code = 502

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source} failure: {message}")
