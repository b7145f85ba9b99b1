"""
HID Set Report protocol for the SIIG KVM switch dongle.

Both reports are 5-byte HID output reports sent as class requests to the
claimed interface::

    bmRequestType  0x21   host-to-device | class | interface
    bRequest       0x09   SET_REPORT
    wValue         0x0200 report type Output (0x02) << 8 | report ID 0
    wIndex         interface number
    data           INIT_REPORT or TRIGGER_REPORT

The report bytes are opaque hardware constants captured from the vendor
tool; INIT_REPORT must precede TRIGGER_REPORT on every newly claimed
interface.
"""

from __future__ import annotations

import logging
from typing import Any

import usb.core
import usb.util

from .core.models import TransferResult
from .errors import ShortWriteError, TransferError, status_of
from .usb_backend import UsbBackend

log = logging.getLogger(__name__)

# =========================================================================
# Constants
# =========================================================================

HID_SET_REPORT = 0x09
HID_REPORT_TYPE_OUTPUT = 0x02
REPORT_ID = 0x00

CONTROL_REQUEST_TYPE_OUT = usb.util.build_request_type(
    usb.util.CTRL_OUT, usb.util.CTRL_TYPE_CLASS, usb.util.CTRL_RECIPIENT_INTERFACE,
)  # 0x21
SET_REPORT_VALUE = (HID_REPORT_TYPE_OUTPUT << 8) | REPORT_ID  # 0x0200

INIT_REPORT = bytes([0x03, 0x00, 0x00, 0x00, 0x00])
TRIGGER_REPORT = bytes([0x03, 0x5C, 0x04, 0x00, 0x00])

DEFAULT_TIMEOUT_MS = 100


# =========================================================================
# Transfer
# =========================================================================

def send_report(backend: UsbBackend, handle: Any, interface_number: int,
                payload: bytes, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> TransferResult:
    """Push *payload* as an output report with a Set Report control transfer.

    Never raises for transfer failures; the outcome is carried by the
    returned ``TransferResult``.
    """
    expected = len(payload)
    try:
        transferred = backend.control_transfer(
            handle, CONTROL_REQUEST_TYPE_OUT, HID_SET_REPORT, SET_REPORT_VALUE,
            interface_number, payload, timeout_ms,
        )
    except usb.core.USBError as e:
        log.error("failed to write report %s: %s", payload.hex(' '), e)
        return TransferResult(
            expected=expected,
            error=TransferError(f"control transfer failed: {e}", status_of(e)),
        )

    if transferred < 0:
        log.error("failed to write report %s: status %d", payload.hex(' '), transferred)
        return TransferResult(
            expected=expected,
            transferred=transferred,
            error=TransferError("control transfer failed", transferred),
        )
    if transferred != expected:
        log.error("control transfer returned short, wrote %d, expected %d",
                  transferred, expected)
        return TransferResult(
            expected=expected,
            transferred=transferred,
            error=ShortWriteError(transferred, expected),
        )

    log.debug("Sent report %s to interface %d", payload.hex(' '), interface_number)
    return TransferResult(expected=expected, transferred=transferred)
