#!/usr/bin/env python3
"""
USB access layer for the KVM switch core.

The ``UsbBackend`` ABC abstracts the raw libusb operations so that:
  • Tests can inject a mock backend (no real hardware needed).
  • ``PyUsbBackend`` provides real USB via pyusb (libusb 1.0 backend).

Failure convention: methods raise ``usb.core.USBError`` carrying the libusb
status in ``backend_error_code``.  ``control_transfer`` may also report a
failure as a negative return value.

Linux dependencies:
  • pyusb:  ``pip install pyusb``  (needs libusb1: ``apt install libusb-1.0-0``)
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Tuple

import usb.backend.libusb1
import usb.core
import usb.util

from .core.models import AltSetting, ConfigDescriptor

log = logging.getLogger(__name__)

# libusb_error LIBUSB_ERROR_NOT_SUPPORTED
_LIBUSB_ERROR_NOT_SUPPORTED = -12


# =========================================================================
# Abstract access layer
# =========================================================================

class UsbBackend(ABC):
    """Capability set the core needs from a USB library, mockable for testing.

    ``device`` values are whatever ``enumerate()`` yields; ``handle`` values
    are whatever ``open()`` returns.  Both are opaque to the core.
    """

    @abstractmethod
    def enumerate(self) -> List[Any]:
        """List every device currently visible on the bus."""

    @abstractmethod
    def device_ids(self, device: Any) -> Tuple[int, int]:
        """Return (idVendor, idProduct) from the device descriptor."""

    @abstractmethod
    def ref(self, device: Any) -> None:
        """Take a reference so the device outlives the enumeration list."""

    @abstractmethod
    def unref(self, device: Any) -> None:
        """Drop a reference taken by ref()."""

    @abstractmethod
    def active_config(self, device: Any) -> ConfigDescriptor:
        """Read the active configuration descriptor."""

    @abstractmethod
    def open(self, device: Any) -> Any:
        """Open the device and return a handle."""

    @abstractmethod
    def close(self, handle: Any) -> None:
        """Close a handle returned by open()."""

    @abstractmethod
    def kernel_driver_active(self, handle: Any, interface: int) -> bool:
        """Whether an OS driver is bound to *interface*."""

    @abstractmethod
    def detach_kernel_driver(self, handle: Any, interface: int) -> None:
        """Unbind the OS driver from *interface*."""

    @abstractmethod
    def attach_kernel_driver(self, handle: Any, interface: int) -> None:
        """Rebind the OS driver to *interface*."""

    @abstractmethod
    def claim_interface(self, handle: Any, interface: int) -> None:
        """Claim *interface* exclusively."""

    @abstractmethod
    def release_interface(self, handle: Any, interface: int) -> None:
        """Release a claimed interface."""

    @abstractmethod
    def control_transfer(self, handle: Any, request_type: int, request: int,
                         value: int, index: int, data: bytes,
                         timeout: int) -> int:
        """Synchronous control transfer.  Returns bytes transferred."""

    def describe(self, device: Any) -> str:
        """Human-readable location of *device* (for diagnostics)."""
        return repr(device)


# =========================================================================
# Real backend: PyUSB  (libusb backend)
# =========================================================================
# Maps libusb calls onto pyusb:
#   libusb_get_device_list      → usb.core.find(find_all=True)
#   libusb_open / libusb_close  → managed handle, usb.util.dispose_resources
#   libusb_*_kernel_driver      → Device.*_kernel_driver
#   libusb_claim/release        → usb.util.claim_interface / release_interface
#   libusb_control_transfer     → Device.ctrl_transfer

class PyUsbBackend(UsbBackend):
    """Real USB access using pyusb (libusb 1.0 backend).

    Requires: ``pip install pyusb`` + ``apt install libusb-1.0-0``
    """

    def __init__(self, backend: Optional[Any] = None):
        if backend is None:
            backend = usb.backend.libusb1.get_backend()
        if backend is None:
            raise usb.core.NoBackendError("failed to initialize libusb")
        self._backend = backend

    def enumerate(self) -> List[Any]:
        # find() is lazy; materialize so enumeration errors surface here
        return list(usb.core.find(find_all=True, backend=self._backend))

    def device_ids(self, device: Any) -> Tuple[int, int]:
        return device.idVendor, device.idProduct

    def ref(self, device: Any) -> None:
        # pyusb Device objects are kept alive by the interpreter
        log.debug("Holding %s", self.describe(device))

    def unref(self, device: Any) -> None:
        usb.util.dispose_resources(device)

    def active_config(self, device: Any) -> ConfigDescriptor:
        if device.bNumConfigurations == 1:
            # cached descriptor, readable without opening the device
            cfg = device[0]
        else:
            cfg = device.get_active_configuration()
        slots: dict[int, list] = {}
        for intf in cfg:
            slots.setdefault(intf.index, []).append(AltSetting(
                interface_number=intf.bInterfaceNumber,
                alternate_setting=intf.bAlternateSetting,
                interface_class=intf.bInterfaceClass,
            ))
        return ConfigDescriptor(
            configuration_value=cfg.bConfigurationValue,
            interfaces=tuple(
                tuple(slots.get(i, ())) for i in range(cfg.bNumInterfaces)
            ),
        )

    def open(self, device: Any) -> Any:
        # pyusb opens the handle lazily; asking for the active configuration
        # forces the open so that access errors surface here.
        device.get_active_configuration()
        return device

    def close(self, handle: Any) -> None:
        usb.util.dispose_resources(handle)

    def kernel_driver_active(self, handle: Any, interface: int) -> bool:
        try:
            return bool(handle.is_kernel_driver_active(interface))
        except NotImplementedError as e:
            raise usb.core.USBError(str(e), error_code=_LIBUSB_ERROR_NOT_SUPPORTED) from e

    def detach_kernel_driver(self, handle: Any, interface: int) -> None:
        try:
            handle.detach_kernel_driver(interface)
        except NotImplementedError as e:
            raise usb.core.USBError(str(e), error_code=_LIBUSB_ERROR_NOT_SUPPORTED) from e

    def attach_kernel_driver(self, handle: Any, interface: int) -> None:
        try:
            handle.attach_kernel_driver(interface)
        except NotImplementedError as e:
            raise usb.core.USBError(str(e), error_code=_LIBUSB_ERROR_NOT_SUPPORTED) from e

    def claim_interface(self, handle: Any, interface: int) -> None:
        usb.util.claim_interface(handle, interface)

    def release_interface(self, handle: Any, interface: int) -> None:
        usb.util.release_interface(handle, interface)

    def control_transfer(self, handle: Any, request_type: int, request: int,
                         value: int, index: int, data: bytes,
                         timeout: int) -> int:
        return handle.ctrl_transfer(request_type, request, value, index, data, timeout)

    def describe(self, device: Any) -> str:
        """``bus:port/port`` path plus IDs, e.g. ``1:2/4 [2101:1406]``."""
        ports = getattr(device, 'port_numbers', None) or ()
        path = f"{device.bus}:{'/'.join(map(str, ports))}"
        return f"{path} [{device.idVendor:04x}:{device.idProduct:04x}]"
