"""Host architecture detection."""

import platform


# Normalize kernel machine names to the names package feeds use
ARCH_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "i386": "i686",
    "i486": "i686",
    "i586": "i686",
    "x86": "i686",
    "armv7l": "armv7a",
    "armv6l": "armv6",
}

DEFAULT_ARCH_PRIORITIES = {"all": 1, "noarch": 1}
HOST_ARCH_PRIORITY = 10


def detect_host_arch() -> str:
    """Detect the current machine's package architecture."""
    machine = platform.machine().lower()
    return ARCH_ALIASES.get(machine, machine or "unknown")


def default_arch_priorities() -> dict[str, int]:
    """Architectures accepted when none are configured."""
    priorities = dict(DEFAULT_ARCH_PRIORITIES)
    priorities[detect_host_arch()] = HOST_ARCH_PRIORITY
    return priorities
