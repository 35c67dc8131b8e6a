"""Exceptions raised by the scheduler and its adapters.

Every error carries a short ``kind`` string. Cycle-outcome events and log
lines use it to name the failure without leaking raw tool output.
"""


class SchedulerError(Exception):
    """Base class for all scheduler errors."""

    kind: str = "scheduler_error"


class ConfigInvalid(SchedulerError):
    """Raised when startup configuration cannot be loaded or validated.

    Fatal: the process exits before any scheduling starts.
    """

    kind = "config_invalid"


# ---------------------------------------------------------------------------
# Scanner side
# ---------------------------------------------------------------------------


class ScanError(SchedulerError):
    """Base class for failures of a single scan invocation."""

    kind = "scan_error"

    def __init__(self, image_ref: str, message: str):
        self.image_ref = image_ref
        super().__init__(f"{image_ref}: {message}")


class ScanTimeout(ScanError):
    """The scanner did not finish within the configured timeout."""

    kind = "scan_timeout"

    def __init__(self, image_ref: str, timeout: float):
        self.timeout = timeout
        super().__init__(image_ref, f"scan timed out after {timeout}s")


class ScanOutputInvalid(ScanError):
    """The scanner's structured output could not be parsed.

    Only the size of the raw output is kept, never its content.
    """

    kind = "scan_output_invalid"

    def __init__(self, image_ref: str, output_size: int, reason: str):
        self.output_size = output_size
        self.reason = reason
        super().__init__(
            image_ref, f"unparseable scanner output ({output_size} bytes): {reason}"
        )


class ScanInvocationFailed(ScanError):
    """The scanner could not be run, or exited with an unexpected status."""

    kind = "scan_invocation_failed"

    def __init__(
        self,
        image_ref: str,
        message: str,
        returncode: int | None = None,
        reason: str = "unknown",
    ):
        self.returncode = returncode
        self.reason = reason
        super().__init__(image_ref, message)


# ---------------------------------------------------------------------------
# Renderer side
# ---------------------------------------------------------------------------


class RenderError(SchedulerError):
    """Base class for report rendering failures."""

    kind = "render_error"


class TemplateNotFound(RenderError):
    """The named template does not exist in any template directory."""

    kind = "template_not_found"

    def __init__(self, template_name: str):
        self.template_name = template_name
        super().__init__(f"template not found: {template_name}")


class TemplateRenderError(RenderError):
    """The template exists but could not be rendered (syntax, missing variable)."""

    kind = "template_render_error"

    def __init__(self, template_name: str, reason: str):
        self.template_name = template_name
        self.reason = reason
        super().__init__(f"failed to render {template_name}: {reason}")


# ---------------------------------------------------------------------------
# Notifier side
# ---------------------------------------------------------------------------


class NotifyError(SchedulerError):
    """Base class for delivery failures to a single destination."""

    kind = "notify_error"
    transient: bool = False

    def __init__(self, destination: str, message: str):
        self.destination = destination
        super().__init__(message)


class NotifyTransient(NotifyError):
    """Delivery failed for a reason worth retrying (network, timeout, 5xx)."""

    kind = "notify_transient"
    transient = True


class NotifyPermanent(NotifyError):
    """Delivery failed for a reason retrying cannot fix (auth, invalid URL)."""

    kind = "notify_permanent"
