"""
Detecting the tool's own version.

The version is determined only once at startup when the code is loaded.
It is used in the CLI's ``--version`` and in the HTTP ``User-Agent`` header.
"""
from typing import Optional

version: Optional[str] = None

try:
    import importlib.metadata
except ImportError:
    pass
else:
    try:
        name, *_ = __name__.split('.')  # usually "kwatch", unless renamed/forked.
        version = importlib.metadata.version(name)
    except importlib.metadata.PackageNotFoundError:
        pass  # running from the source tree without installation.
