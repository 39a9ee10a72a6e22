"""SentryGuard: acoustic sentinel that escalates alarms and distress cries to a webhook."""

from importlib.metadata import version, PackageNotFoundError

__all__ = [
    "get_version",
]


def get_version() -> str:
    """Return package version if installed as distribution."""
    try:
        return version("sentryguard")
    except PackageNotFoundError:
        return "0.0.0"
