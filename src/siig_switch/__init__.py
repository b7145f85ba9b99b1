"""
siig-switch - SIIG USB KVM switch trigger

Finds the KVM switch dongle (VID 0x2101, PID 0x1406), takes its second
interface away from usbhid, and sends the HID Set Report sequence that
flips the switch to this host.

Usage:
    # As a library
    from siig_switch import find_device
    with find_device() as kvm:
        kvm.trigger()

    # Command line
    siig-switch           # Switch to this host
    siig-switch detect    # List attached dongles
"""

from .__version__ import __version__
from .device_detector import (
    PRODUCT_ID,
    VENDOR_ID,
    DeviceToken,
    find_devices,
    resolve_interface,
)
from .errors import (
    ClaimError,
    DescriptorError,
    DetachError,
    DeviceNotFoundError,
    DriverQueryError,
    EnumerationError,
    MultipleDevicesError,
    OpenError,
    ProtocolError,
    SessionClosedError,
    ShortWriteError,
    SwitchError,
    TokenError,
    TransferError,
    UnexpectedTopology,
)
from .kvm_device import KvmDevice, find_device, switch
from .usb_backend import PyUsbBackend, UsbBackend

__all__ = [
    # Version
    "__version__",
    # Matching
    "VENDOR_ID",
    "PRODUCT_ID",
    "DeviceToken",
    "find_devices",
    "resolve_interface",
    # Session
    "KvmDevice",
    "find_device",
    "switch",
    # Access layer
    "UsbBackend",
    "PyUsbBackend",
    # Errors
    "SwitchError",
    "EnumerationError",
    "UnexpectedTopology",
    "DeviceNotFoundError",
    "MultipleDevicesError",
    "DescriptorError",
    "OpenError",
    "DriverQueryError",
    "DetachError",
    "ClaimError",
    "ProtocolError",
    "TransferError",
    "ShortWriteError",
    "SessionClosedError",
    "TokenError",
]
