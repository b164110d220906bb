"""
Package version and the User-Agent sent to the custody service.
"""
import importlib.metadata
import pathlib

import tomli

DISTRIBUTION_NAME = "passkey-wallet-sdk"
DEFAULT_VERSION = "0.1.0"
PYPROJECT_PATH = pathlib.Path(__file__).parent.parent / "pyproject.toml"


def get_version(pyproject_path: pathlib.Path = PYPROJECT_PATH) -> str:
    """
    Resolve the SDK version.

    Installed distribution metadata wins. A source checkout falls back to
    the version declared in pyproject.toml, and anything unreadable falls
    back to DEFAULT_VERSION.
    """
    try:
        return importlib.metadata.version(DISTRIBUTION_NAME)
    except importlib.metadata.PackageNotFoundError:
        pass

    try:
        with pyproject_path.open("rb") as f:
            return tomli.load(f)["project"]["version"]
    except (OSError, KeyError, tomli.TOMLDecodeError):
        return DEFAULT_VERSION


__version__ = get_version()
USER_AGENT = f"{DISTRIBUTION_NAME}/{__version__}"
