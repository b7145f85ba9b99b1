"""siig-switch version information."""

__version__ = "1.0.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Version history:
# 1.0.0 - pyusb rewrite: ownership tokens for matched devices, ExitStack
#         unwind on partial acquisition, TransferResult for Set Report
#         outcomes, detect/setup-udev/config commands
