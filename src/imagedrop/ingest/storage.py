"""On-disk layout for derivatives.

Layout under the configured root::

    {root}/.htaccess
    {root}/original/{identity}.{ext}
    {root}/large/{identity}.{ext}
    {root}/thumb/{identity}.{ext}

Files are created with exclusive-create semantics and never rewritten.
"""

from __future__ import annotations

import contextlib
import logging
import secrets
import shutil
import time
from typing import TYPE_CHECKING

from imagedrop.ingest.models import DerivativeKind, DerivativePaths

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

ACCESS_FILE_NAME = ".htaccess"

ACCESS_FILE_CONTENT = """\
# Disable script execution in the uploads directory
<FilesMatch "\\.(php|phtml|phar|pl|py|cgi|sh)$">
    Require all denied
</FilesMatch>

# Serve only image files
<FilesMatch "\\.(jpg|jpeg|png|webp)$">
    Require all granted
</FilesMatch>

# Disable directory listing
Options -Indexes -ExecCGI
"""

IDENTITY_PREFIX = "img_"


def new_identity() -> str:
    """Return a fresh upload identity: microsecond timestamp plus 40 random bits."""
    return f"{IDENTITY_PREFIX}{time.time_ns() // 1000:x}{secrets.token_hex(5)}"


class DerivativeStore:
    """Maps identities to derivative paths and performs the writes."""

    def __init__(self, root: Path, extension: str) -> None:
        self._root = root
        self._extension = extension

    @property
    def root(self) -> Path:
        return self._root

    def directory(self, kind: DerivativeKind) -> Path:
        return self._root / kind.value

    def paths_for(self, identity: str) -> DerivativePaths:
        """Return the deterministic paths of all derivatives for ``identity``."""
        filename = f"{identity}.{self._extension}"
        return DerivativePaths(
            original=self.directory(DerivativeKind.ORIGINAL) / filename,
            large=self.directory(DerivativeKind.LARGE) / filename,
            thumb=self.directory(DerivativeKind.THUMB) / filename,
        )

    def ensure_layout(self) -> None:
        """Create the derivative directories and the access file if missing.

        Raises:
            OSError: If a directory or the access file cannot be created.
        """
        for kind in DerivativeKind:
            self.directory(kind).mkdir(parents=True, exist_ok=True)

        access_file = self._root / ACCESS_FILE_NAME
        if not access_file.exists():
            try:
                with access_file.open("x", encoding="utf-8") as fh:
                    fh.write(ACCESS_FILE_CONTENT)
            except FileExistsError:
                # Another request created it first.
                return
            logger.info("Created access file at %s", access_file)

    def write(self, path: Path, data: bytes) -> None:
        """Write ``data`` to a new file at ``path``.

        A partially written file is removed before the error propagates.

        Raises:
            FileExistsError: If ``path`` already exists.
            OSError: On any other write failure.
        """
        with path.open("xb") as fh:
            try:
                fh.write(data)
            except OSError:
                fh.close()
                with contextlib.suppress(OSError):
                    path.unlink()
                raise

    def copy(self, source: Path, destination: Path) -> None:
        """Copy ``source`` byte-for-byte to ``destination``, replacing any partial file."""
        shutil.copyfile(source, destination)

    def read(self, path: Path) -> bytes:
        return path.read_bytes()
