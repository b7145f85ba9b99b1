#!/usr/bin/env python3
"""
siig-switch - Command Line Interface

Entry point for the siig-switch package.  Each run drives the core once
and maps its outcome to the exit code (0 = success, 1 = failure).
"""

import argparse
import logging
import os
import subprocess
import sys

from .__version__ import __version__

UDEV_RULES_PATH = "/etc/udev/rules.d/99-siig-switch.rules"


def _setup_logging(verbose=0):
    """Configure root logging from the -v count."""
    if verbose >= 2:
        logging.basicConfig(level=logging.DEBUG, format='[%(levelname)s] %(name)s: %(message)s')
    elif verbose == 1:
        logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    else:
        logging.basicConfig(level=logging.WARNING, format='[%(levelname)s] %(message)s')
    if verbose < 3:
        # pyusb logs every backend call at DEBUG
        logging.getLogger('usb').setLevel(logging.INFO)


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="siig-switch",
        description="Flip a SIIG USB KVM switch to this computer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    siig-switch                   Switch the KVM to this host
    siig-switch switch -t 250     Switch with a 250 ms transfer timeout
    siig-switch detect            List attached KVM dongles
    siig-switch setup-udev        Allow non-root access to the dongle
    siig-switch config -t 200     Save the default transfer timeout
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv, -vvv)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Switch command
    switch_parser = subparsers.add_parser("switch", help="Switch the KVM to this host (default)")
    switch_parser.add_argument("--timeout", "-t", type=int, help="Control transfer timeout in ms")

    # Detect command
    subparsers.add_parser("detect", help="List attached KVM dongles")

    # Setup udev rules command
    udev_parser = subparsers.add_parser("setup-udev", help="Install udev rule for dongle access")
    udev_parser.add_argument("--dry-run", action="store_true", help="Print rule without installing")

    # Config command
    config_parser = subparsers.add_parser("config", help="Show or change saved settings")
    config_parser.add_argument("--timeout", "-t", type=int, help="Save control transfer timeout in ms")

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    if args.command is None:
        return switch()
    elif args.command == "switch":
        return switch(timeout_ms=args.timeout)
    elif args.command == "detect":
        return detect()
    elif args.command == "setup-udev":
        return setup_udev(dry_run=args.dry_run)
    elif args.command == "config":
        return configure(timeout_ms=args.timeout)

    return 0


def switch(timeout_ms=None):
    """Flip the KVM switch once."""
    from .conf import get_timeout_ms
    from .kvm_device import switch as switch_kvm

    if timeout_ms is None:
        timeout_ms = get_timeout_ms()
    elif timeout_ms <= 0:
        print("Error: timeout must be a positive number of milliseconds", file=sys.stderr)
        return 1

    return 0 if switch_kvm(timeout_ms=timeout_ms) else 1


def detect():
    """List attached KVM dongles."""
    try:
        from .device_detector import PRODUCT_ID, VENDOR_ID, find_devices, release_all
        from .usb_backend import PyUsbBackend

        backend = PyUsbBackend()
        tokens = find_devices(VENDOR_ID, PRODUCT_ID, backend)
        try:
            if not tokens:
                print("No KVM dongle detected.")
                return 1
            for i, token in enumerate(tokens, 1):
                print(f"[{i}] {token.describe()}")
            if len(tokens) > 1:
                print("\nMore than one dongle attached; switching needs exactly one.")
        finally:
            release_all(tokens)
        return 0
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def setup_udev(dry_run=False):
    """Install a udev rule giving users access to the dongle.

    Without it, opening the device and detaching usbhid need root.
    """
    from .device_detector import PRODUCT_ID, VENDOR_ID

    rules_content = (
        "# SIIG KVM switch dongle, auto-generated by siig-switch setup-udev\n"
        f'SUBSYSTEM=="usb", '
        f'ATTRS{{idVendor}}=="{VENDOR_ID:04x}", '
        f'ATTRS{{idProduct}}=="{PRODUCT_ID:04x}", '
        f'MODE="0666"\n'
    )

    if dry_run:
        print(rules_content)
        print(f"# Would write to {UDEV_RULES_PATH}")
        return 0

    if os.geteuid() != 0:
        print("Error: root required. Run with:", file=sys.stderr)
        print("  sudo siig-switch setup-udev", file=sys.stderr)
        print("\nOr preview first:", file=sys.stderr)
        print("  siig-switch setup-udev --dry-run", file=sys.stderr)
        return 1

    try:
        with open(UDEV_RULES_PATH, "w") as f:
            f.write(rules_content)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Wrote {UDEV_RULES_PATH}")

    subprocess.run(["udevadm", "control", "--reload-rules"], check=False)
    subprocess.run(["udevadm", "trigger"], check=False)
    print("\nDone. Replug the KVM dongle for changes to take effect.")
    return 0


def configure(timeout_ms=None):
    """Show saved settings, or persist a new timeout."""
    from .conf import CONFIG_PATH, get_timeout_ms, save_timeout_ms

    if timeout_ms is not None:
        try:
            save_timeout_ms(timeout_ms)
        except (ValueError, OSError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(f"Saved timeout_ms={timeout_ms} to {CONFIG_PATH}")
        return 0

    print(f"Config: {CONFIG_PATH}")
    print(f"  timeout_ms: {get_timeout_ms()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
