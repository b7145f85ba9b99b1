#!/usr/bin/env python3
"""
Device session for the SIIG KVM switch dongle (VID 0x2101, PID 0x1406).

``KvmDevice`` owns one opened, claimed device.  Construction walks the
acquisition chain::

    open → kernel driver query/detach → claim → INIT_REPORT → READY

and every step registers its compensating release, so a failure anywhere
unwinds what was already acquired (release interface, reattach driver,
close handle, drop device reference) before the error propagates.
``close()`` runs the same releases exactly once for a ready session.

Typical use::

    with find_device() as kvm:
        kvm.trigger()

or simply ``switch()``.
"""

import logging
from contextlib import ExitStack
from typing import Any, Optional

import usb.core

from .core.models import SessionState, TransferResult
from .device_detector import (
    PRODUCT_ID,
    VENDOR_ID,
    DeviceToken,
    find_devices,
    release_all,
    resolve_interface,
)
from .errors import (
    ClaimError,
    DetachError,
    DeviceNotFoundError,
    DriverQueryError,
    EnumerationError,
    MultipleDevicesError,
    OpenError,
    SessionClosedError,
    SwitchError,
    status_of,
)
from .protocol import DEFAULT_TIMEOUT_MS, INIT_REPORT, TRIGGER_REPORT, send_report
from .usb_backend import PyUsbBackend, UsbBackend

log = logging.getLogger(__name__)


class KvmDevice:
    """Exclusive session on the KVM dongle's switch interface.

    Not copyable: the session is the single owner of the device handle
    and its releases must run exactly once.
    """

    def __init__(self, token: DeviceToken, interface_number: int,
                 backend: UsbBackend, timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self._backend = backend
        self._token = token.consume()
        self._interface_number = interface_number
        self._handle: Any = None
        self._teardown: Optional[ExitStack] = None
        self.timeout_ms = timeout_ms
        self.detached_kernel = False
        self.state = SessionState.UNOPENED

        try:
            with ExitStack() as stack:
                stack.callback(self._release_device)
                self._open()
                stack.callback(self._close_handle)
                self._check_kernel_driver()
                if self.detached_kernel:
                    stack.callback(self._reattach_kernel_driver)
                self._claim()
                stack.callback(self._release_interface)
                self.initialize()
                self._teardown = stack.pop_all()
        except BaseException:
            self.state = SessionState.FAILED
            raise

        self.state = SessionState.READY
        log.debug("KVM session ready on interface %d", interface_number)

    # -- Acquisition steps ---------------------------------------------

    def _open(self) -> None:
        try:
            self._handle = self._backend.open(self._token.device)
        except usb.core.USBError as e:
            log.error("failed to open %s", self._token.describe())
            raise OpenError(f"failed to open KVM device: {e}", status_of(e)) from e
        self.state = SessionState.OPENED

    def _check_kernel_driver(self) -> None:
        n = self._interface_number
        try:
            active = self._backend.kernel_driver_active(self._handle, n)
        except usb.core.USBError as e:
            raise DriverQueryError(
                f"failed to query kernel driver on interface {n}: {e}", status_of(e)
            ) from e

        if active:
            try:
                self._backend.detach_kernel_driver(self._handle, n)
            except usb.core.USBError as e:
                raise DetachError(
                    f"failed to detach kernel driver from interface {n}: {e}", status_of(e)
                ) from e
            self.detached_kernel = True
            log.debug("Detached kernel driver from interface %d", n)
        self.state = SessionState.DRIVER_CHECKED

    def _claim(self) -> None:
        n = self._interface_number
        try:
            self._backend.claim_interface(self._handle, n)
        except usb.core.USBError as e:
            raise ClaimError(f"failed to claim interface {n}: {e}", status_of(e)) from e
        self.state = SessionState.INTERFACE_CLAIMED

    # -- Releases (run in reverse order by the ExitStack) ----------------

    def _release_interface(self) -> None:
        try:
            self._backend.release_interface(self._handle, self._interface_number)
        except usb.core.USBError as e:
            log.warning("Failed to release interface %d: %s", self._interface_number, e)

    def _reattach_kernel_driver(self) -> None:
        try:
            self._backend.attach_kernel_driver(self._handle, self._interface_number)
            log.debug("Reattached kernel driver to interface %d", self._interface_number)
        except usb.core.USBError as e:
            log.warning("Failed to reattach kernel driver to interface %d: %s",
                        self._interface_number, e)

    def _close_handle(self) -> None:
        try:
            self._backend.close(self._handle)
        except usb.core.USBError as e:
            log.warning("Failed to close device handle: %s", e)
        self._handle = None

    def _release_device(self) -> None:
        self._token.release()

    # -- Protocol ---------------------------------------------------------

    @property
    def interface_number(self) -> int:
        return self._interface_number

    def send_request(self, payload: bytes,
                     timeout_ms: Optional[int] = None) -> TransferResult:
        """Send *payload* as a HID Set Report on the claimed interface."""
        if timeout_ms is None:
            timeout_ms = self.timeout_ms
        return send_report(self._backend, self._handle, self._interface_number,
                           payload, timeout_ms)

    def initialize(self) -> None:
        """Send INIT_REPORT.  Runs once, from the constructor.

        Raises:
            ProtocolError: If the device did not accept the full report.
        """
        if self.state is not SessionState.INTERFACE_CLAIMED:
            raise RuntimeError("initialize() runs once, while the session is being built")
        self.send_request(INIT_REPORT).raise_for_error()
        self.state = SessionState.INITIALIZED

    def trigger(self) -> TransferResult:
        """Send TRIGGER_REPORT, flipping the switch.

        A failed trigger leaves the session open; the caller may retry or
        close it.

        Raises:
            SessionClosedError: If the session was already closed.
        """
        if self.state is not SessionState.READY:
            raise SessionClosedError("KVM session is closed")
        return self.send_request(TRIGGER_REPORT)

    # -- Teardown ---------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def close(self) -> None:
        """Release interface, reattach driver, close handle, drop device."""
        if self.state is not SessionState.READY:
            return
        teardown, self._teardown = self._teardown, None
        self.state = SessionState.CLOSED
        if teardown is not None:
            teardown.close()
        log.debug("KVM session closed")

    def __enter__(self) -> 'KvmDevice':
        return self

    def __exit__(self, *exc):
        self.close()

    def __del__(self):
        if getattr(self, 'state', None) is SessionState.READY:
            log.warning("KvmDevice garbage-collected while open, closing")
            self.close()

    # -- Ownership ----------------------------------------------------------

    def __copy__(self):
        raise TypeError("KvmDevice owns a device handle and cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("KvmDevice owns a device handle and cannot be copied")

    def __reduce_ex__(self, protocol):
        raise TypeError("KvmDevice owns a device handle and cannot be pickled")

    def __repr__(self) -> str:
        return (f"KvmDevice(interface={self._interface_number}, "
                f"state={self.state.name}, detached_kernel={self.detached_kernel})")


# =========================================================================
# Public API
# =========================================================================

def find_device(backend: Optional[UsbBackend] = None,
                timeout_ms: int = DEFAULT_TIMEOUT_MS) -> KvmDevice:
    """Locate the single attached KVM dongle and open a ready session on it.

    Raises:
        EnumerationError: If libusb is unavailable or the bus could not be listed.
        UnexpectedTopology: If zero or several dongles are attached, or the
            dongle's interface layout is not the expected one.
        SwitchError: Any acquisition or initialization failure.
    """
    if backend is None:
        try:
            backend = PyUsbBackend()
        except usb.core.NoBackendError as e:
            raise EnumerationError("failed to initialize libusb") from e

    tokens = find_devices(VENDOR_ID, PRODUCT_ID, backend)
    if not tokens:
        raise DeviceNotFoundError("failed to find a connected KVM device")
    if len(tokens) > 1:
        release_all(tokens)
        raise MultipleDevicesError(f"found {len(tokens)} connected KVM devices, expected 1")

    token = tokens[0]
    try:
        interface_number = resolve_interface(token, backend)
    except SwitchError:
        token.release()
        raise

    return KvmDevice(token, interface_number, backend, timeout_ms)


def switch(backend: Optional[UsbBackend] = None,
           timeout_ms: int = DEFAULT_TIMEOUT_MS) -> bool:
    """Flip the KVM switch once.  Returns True on success.

    Every failure is logged and reported as False; nothing is retried.
    """
    try:
        with find_device(backend, timeout_ms) as kvm:
            result = kvm.trigger()
    except SwitchError as e:
        log.error("%s", e)
        return False

    if result:
        log.info("KVM switch triggered")
    return bool(result)
