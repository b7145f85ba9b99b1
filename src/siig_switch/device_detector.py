#!/usr/bin/env python3
"""
USB KVM Device Detector
Finds the SIIG KVM switch dongle on the bus and resolves the interface
that accepts the switch command.

Supported devices:
- ActionStar (SIIG KVM): VID=0x2101, PID=0x1406

Every matching device is returned wrapped in a ``DeviceToken``.  A token
owns one device reference and must be released exactly once, either by
the caller (when the device is rejected) or by the ``KvmDevice`` session
that consumed it.
"""

import logging
from typing import Any, Iterable, List

import usb.core

from .errors import (
    DescriptorError,
    EnumerationError,
    OpenError,
    TokenError,
    UnexpectedTopology,
    status_of,
)
from .usb_backend import UsbBackend

log = logging.getLogger(__name__)

VENDOR_ID = 0x2101
PRODUCT_ID = 0x1406

# The dongle exposes two HID interfaces; the switch command goes to the second.
EXPECTED_INTERFACES = 2
TARGET_INTERFACE_INDEX = 1

# libusb_error LIBUSB_ERROR_ACCESS
LIBUSB_ERROR_ACCESS = -3


# =========================================================================
# Ownership token
# =========================================================================

class DeviceToken:
    """One held reference to a matched device.

    ``consume()`` transfers responsibility for the reference to a new owner
    and may be called once.  ``release()`` drops the reference and may be
    called once.  Misuse raises ``TokenError``.
    """

    def __init__(self, device: Any, backend: UsbBackend):
        self._device = device
        self._backend = backend
        self._consumed = False
        self._released = False

    @property
    def device(self) -> Any:
        if self._released:
            raise TokenError("device token used after release")
        return self._device

    @property
    def consumed(self) -> bool:
        return self._consumed

    @property
    def released(self) -> bool:
        return self._released

    def consume(self) -> 'DeviceToken':
        if self._consumed:
            raise TokenError("device token consumed twice")
        if self._released:
            raise TokenError("device token consumed after release")
        self._consumed = True
        return self

    def release(self) -> None:
        if self._released:
            raise TokenError("device token released twice")
        self._released = True
        self._backend.unref(self._device)

    def describe(self) -> str:
        return self._backend.describe(self._device)

    def __del__(self):
        if not getattr(self, '_released', True):
            log.warning("Device token for %r dropped without release", self._device)


def release_all(tokens: Iterable[DeviceToken]) -> None:
    """Release every token that is still held."""
    for token in tokens:
        if not token.released:
            token.release()


# =========================================================================
# Matcher
# =========================================================================

def find_devices(vendor_id: int, product_id: int,
                 backend: UsbBackend) -> List[DeviceToken]:
    """Return a token for every attached device with the given IDs.

    Raises:
        EnumerationError: If the bus could not be listed.
    """
    try:
        devices = backend.enumerate()
    except (usb.core.USBError, usb.core.NoBackendError) as e:
        raise EnumerationError(
            f"failed to enumerate USB devices: {e}", status_of(e)
        ) from e

    result: List[DeviceToken] = []
    try:
        for device in devices:
            if backend.device_ids(device) != (vendor_id, product_id):
                continue
            backend.ref(device)
            result.append(DeviceToken(device, backend))
    except usb.core.USBError as e:
        release_all(result)
        raise EnumerationError(
            f"failed to read device descriptor: {e}", status_of(e)
        ) from e

    log.debug("Found %d device(s) matching %04x:%04x",
              len(result), vendor_id, product_id)
    return result


# =========================================================================
# Interface resolver
# =========================================================================

def resolve_interface(token: DeviceToken, backend: UsbBackend) -> int:
    """Return bInterfaceNumber of the second interface of the active config.

    The topology check is fixed to this hardware: exactly two interfaces,
    the second with exactly one alternate setting.

    Raises:
        OpenError: If reading the descriptor was refused for lack of access.
        UnexpectedTopology: If the descriptor is unreadable or the layout
            does not match.
    """
    try:
        config = backend.active_config(token.device)
    except usb.core.USBError as e:
        status = status_of(e)
        if status == LIBUSB_ERROR_ACCESS:
            raise OpenError(
                f"failed to open KVM device: {e}", status
            ) from e
        raise DescriptorError(
            "failed to get active config descriptor", status
        ) from e

    if config.num_interfaces != EXPECTED_INTERFACES:
        raise UnexpectedTopology(
            f"unexpected number of interfaces: {config.num_interfaces}, "
            f"expected {EXPECTED_INTERFACES}"
        )

    altsettings = config.interfaces[TARGET_INTERFACE_INDEX]
    if len(altsettings) != 1:
        raise UnexpectedTopology(
            f"unexpected number of alternate interfaces: {len(altsettings)}, expected 1"
        )

    interface_number = altsettings[0].interface_number
    log.debug("Resolved target interface %d on %s", interface_number, token.describe())
    return interface_number
