"""Exception hierarchy for the siteguard package."""


class SiteGuardError(Exception):
    """Base exception for all siteguard errors."""

    pass


class ConfigurationError(SiteGuardError):
    """Raised when the service is missing configuration it needs to run."""

    pass


class MissingApiKeyError(ConfigurationError):
    """Raised when no Gemini API key is configured."""

    def __init__(self) -> None:
        super().__init__("Gemini API key is not configured. Set GEMINI_API_KEY in the environment or .env file.")


class MissingDependencyError(ConfigurationError):
    """Raised when an external binary such as ffmpeg is not installed."""

    def __init__(self, binary: str):
        super().__init__(f"Required executable '{binary}' was not found on PATH.")
        self.binary = binary


class InferenceError(SiteGuardError):
    """Raised when the AI service call fails or times out."""

    pass


class VideoValidationError(SiteGuardError):
    """Raised when an upload is rejected before processing (type, size, duration)."""

    pass


class ProbeError(SiteGuardError):
    """Raised when ffprobe cannot read a media file."""

    pass


class RepairError(SiteGuardError):
    """Raised when a video cannot be made acceptable to the AI service."""

    pass


class CaptureError(SiteGuardError):
    """Raised when the decoder itself fails while capturing a frame."""

    pass


class CaptureTimeoutError(CaptureError):
    """Raised when a seek does not complete in time."""

    pass


class ReportNotFoundError(SiteGuardError):
    def __init__(self, report_id: str):
        super().__init__(f"Report not found: {report_id}")
        self.report_id = report_id


class InconsistentStateError(SiteGuardError):
    """Raised when an update would target a report other than the one being viewed."""

    pass


class SaveRejectedError(SiteGuardError):
    """Raised when an analysis result is not eligible to be saved."""

    pass
