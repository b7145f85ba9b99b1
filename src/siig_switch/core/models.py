"""
Pure data classes shared by the access layer, the matcher and the session.

No USB library imports here, so these can be built freely in tests.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional, Tuple

from ..errors import ProtocolError

# =============================================================================
# Descriptor snapshots
# =============================================================================


@dataclass(frozen=True)
class AltSetting:
    """One alternate setting of an interface (libusb_interface_descriptor)."""
    interface_number: int      # bInterfaceNumber
    alternate_setting: int = 0  # bAlternateSetting
    interface_class: int = 0   # bInterfaceClass (0x03 = HID)


@dataclass(frozen=True)
class ConfigDescriptor:
    """Snapshot of a device's active configuration.

    ``interfaces[i]`` holds every alternate setting of interface slot *i*,
    in descriptor order (libusb_config_descriptor.interface[i].altsetting).
    """
    configuration_value: int = 1
    interfaces: Tuple[Tuple[AltSetting, ...], ...] = ()

    @property
    def num_interfaces(self) -> int:
        """bNumInterfaces."""
        return len(self.interfaces)


# =============================================================================
# Session lifecycle
# =============================================================================


class SessionState(Enum):
    """Lifecycle of a KvmDevice, in acquisition order."""
    UNOPENED = auto()
    OPENED = auto()
    DRIVER_CHECKED = auto()
    INTERFACE_CLAIMED = auto()
    INITIALIZED = auto()
    READY = auto()
    CLOSED = auto()
    FAILED = auto()     # construction aborted before READY


# =============================================================================
# Transfer outcome
# =============================================================================


@dataclass(frozen=True)
class TransferResult:
    """Outcome of one Set Report control transfer.

    Truthy only when the device accepted every byte of the report.
    """
    expected: int
    transferred: int = 0
    error: Optional[ProtocolError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __bool__(self) -> bool:
        return self.ok

    def raise_for_error(self) -> None:
        """Raise the carried ProtocolError, if any."""
        if self.error is not None:
            raise self.error
