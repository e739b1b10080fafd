from __future__ import annotations

from typing import Iterable, Optional


class ReelscanError(RuntimeError):
    """Base class for every failure raised while probing a bundle."""


class InvalidTimeoutError(ReelscanError, ValueError):
    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(
            f"timeoutInMilliseconds must be a positive finite number of milliseconds, but got {value!r}"
        )


class InvalidInputPropsError(ReelscanError, ValueError):
    pass


class SessionAcquisitionError(ReelscanError):
    """The browser could not be launched, attached to, or asked for a page."""


class BundleNotFoundError(ReelscanError):
    def __init__(self, bundle_location: str) -> None:
        self.bundle_location = bundle_location
        super().__init__(
            f"Bundle location {bundle_location!r} is neither an existing directory nor an http(s) URL"
        )


class ContentServerError(ReelscanError):
    """The static server for a bundle could not be started."""


class BundleNavigationError(ReelscanError):
    def __init__(self, url: str, status: Optional[int], reason: Optional[str] = None) -> None:
        self.url = url
        self.status = status
        self.reason = reason
        if reason is not None:
            message = f"Could not navigate to {url}: {reason}"
        else:
            message = (
                f"Tried to go to {url} but the status code was {status} instead of 200. "
                "Does the bundle you specified exist?"
            )
        super().__init__(message)


class IncompatibleBundleError(ReelscanError):
    pass


class ReadinessTimeoutError(ReelscanError):
    def __init__(self, timeout_ms: float) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(
            f"The bundle did not signal readiness within {timeout_ms:g}ms. "
            "Make sure every delayRender() call is matched by continueRender(), "
            "or raise timeoutInMilliseconds."
        )


class DiscoveryTimeoutError(ReelscanError):
    def __init__(self, timeout_ms: float, step: str) -> None:
        self.timeout_ms = timeout_ms
        self.step = step
        super().__init__(f"Discovering compositions exceeded the timeout of {timeout_ms:g}ms during step '{step}'")


class RemoteOperationError(ReelscanError):
    """A call into the page threw or rejected."""

    def __init__(self, operation: str, message: str, stack: Optional[str] = None) -> None:
        self.operation = operation
        self.remote_message = message
        self.stack = stack
        super().__init__(f"{operation} failed inside the browser: {message}")


class RemotePageError(ReelscanError):
    """An error surfaced by the page that is unrelated to the call in flight."""

    def __init__(self, message: str, stack: Optional[str] = None, source_map: Optional[object] = None) -> None:
        self.remote_message = message
        self.stack = stack
        self.source_map = source_map
        super().__init__(f"Uncaught error in the browser page: {message}")


class CompositionNotFoundError(ReelscanError):
    def __init__(self, identifier: str, available: Iterable[str] = ()) -> None:
        self.identifier = identifier
        self.available = list(available)
        found = ", ".join(self.available) if self.available else "none"
        super().__init__(
            f"Could not find composition with ID {identifier}. The compositions that were found are: {found}"
        )


class DuplicateCompositionError(ReelscanError):
    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"The bundle registered more than one composition with the ID {identifier}")


class InvalidCompositionError(ReelscanError, ValueError):
    pass


class InvalidDimensionError(InvalidCompositionError):
    def __init__(self, name: str, message: str) -> None:
        self.name = name
        super().__init__(message)
