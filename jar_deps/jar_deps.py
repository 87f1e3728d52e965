"""Version and application directories for jar-deps."""

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as meta_version

from platformdirs import PlatformDirs


def version() -> str:
    """Return the installed version of jar-deps."""
    try:
        return meta_version("jar-deps")
    except PackageNotFoundError:
        from . import __version__

        return __version__


APP_DIRS = PlatformDirs("jar-deps", "Meandre")
