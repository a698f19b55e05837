"""faff version information."""

__version__ = "0.3.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Version history:
# 0.1.0 - Initial release: find device by VID:PID[:serial], program + verify
# 0.2.0 - Load address support, detect command, status LED feedback
# 0.3.0 - Bounded busy polling, identify/erase/read/led/config commands,
#         JSON config file for USB ids, endpoints and timeouts
