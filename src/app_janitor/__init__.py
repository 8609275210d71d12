"""!
@brief App Janitor package root.
@details Modules under this namespace resolve application identifiers to
removal candidates, drive their removal through a single safety gate, escalate
against stubborn targets, and fan the work out over bounded worker pools.
"""

__all__ = [
    "main",
    "config",
    "constants",
    "models",
    "gate",
    "confirm",
    "resolver",
    "uninstaller",
    "escalation",
    "batch",
    "command_parser",
    "command_runner",
    "uninstall_records",
    "package_manager",
    "appx",
    "processes",
    "fs_tools",
    "registry_tools",
    "guid_utils",
    "logging_ext",
    "version",
]
