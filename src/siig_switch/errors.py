"""
Error taxonomy for the KVM switch core.

Every failure carries the stage that failed (``kind``) and, when the USB
access layer reported one, the originating libusb status code (``status``).
All errors are terminal for the current attempt: nothing here is retried.
"""

from __future__ import annotations

from typing import Optional

# libusb_error values (libusb.h) → libusb_error_name()
LIBUSB_ERROR_NAMES: dict[int, str] = {
    0: "LIBUSB_SUCCESS",
    -1: "LIBUSB_ERROR_IO",
    -2: "LIBUSB_ERROR_INVALID_PARAM",
    -3: "LIBUSB_ERROR_ACCESS",
    -4: "LIBUSB_ERROR_NO_DEVICE",
    -5: "LIBUSB_ERROR_NOT_FOUND",
    -6: "LIBUSB_ERROR_BUSY",
    -7: "LIBUSB_ERROR_TIMEOUT",
    -8: "LIBUSB_ERROR_OVERFLOW",
    -9: "LIBUSB_ERROR_PIPE",
    -10: "LIBUSB_ERROR_INTERRUPTED",
    -11: "LIBUSB_ERROR_NO_MEM",
    -12: "LIBUSB_ERROR_NOT_SUPPORTED",
    -99: "LIBUSB_ERROR_OTHER",
}


def error_name(status: Optional[int]) -> str:
    """Render a libusb status code the way libusb_error_name() does."""
    if status is None:
        return "UNKNOWN"
    return LIBUSB_ERROR_NAMES.get(status, "**UNKNOWN**")


def status_of(exc: BaseException) -> Optional[int]:
    """Extract the libusb status code from an access-layer exception.

    pyusb stores it in ``backend_error_code``; a plain negative ``errno``
    is accepted as a fallback for other backends.
    """
    code = getattr(exc, 'backend_error_code', None)
    if isinstance(code, int):
        return code
    errno = getattr(exc, 'errno', None)
    if isinstance(errno, int) and errno < 0:
        return errno
    return None


class SwitchError(Exception):
    """Base class for every device acquisition or protocol failure."""

    kind = "error"

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    def __str__(self) -> str:
        msg = super().__str__()
        if self.status is not None:
            return f"{msg} ({error_name(self.status)})"
        return msg


class EnumerationError(SwitchError):
    """Listing the devices on the bus failed."""
    kind = "enumerate"


class UnexpectedTopology(SwitchError):
    """The bus or the device does not look like the expected hardware."""
    kind = "topology"


class DeviceNotFoundError(UnexpectedTopology):
    """No device matched the vendor/product pair."""


class MultipleDevicesError(UnexpectedTopology):
    """More than one device matched the vendor/product pair."""


class DescriptorError(UnexpectedTopology):
    """The active configuration descriptor could not be read."""


class OpenError(SwitchError):
    kind = "open"


class DriverQueryError(SwitchError):
    kind = "driver-query"


class DetachError(SwitchError):
    kind = "detach"


class ClaimError(SwitchError):
    kind = "claim"


class ProtocolError(SwitchError):
    """A Set Report control transfer did not complete in full."""
    kind = "protocol"


class TransferError(ProtocolError):
    """The access layer reported a failed transfer (negative status)."""


class ShortWriteError(ProtocolError):
    """The transfer succeeded but moved fewer bytes than the report holds."""

    def __init__(self, transferred: int, expected: int):
        super().__init__(
            f"control transfer returned short, wrote {transferred}, expected {expected}"
        )
        self.transferred = transferred
        self.expected = expected


class SessionClosedError(SwitchError):
    """The session was already torn down."""
    kind = "closed"


class TokenError(RuntimeError):
    """A device ownership token was consumed or released twice."""
