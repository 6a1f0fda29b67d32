"""
Private key loading.

Turns a private key file into an asyncssh key usable for public key
authentication. Failures are always raised as KeyLoadError, distinguishing
a file that cannot be read from one that cannot be parsed.
"""

import logging
import os
from typing import Optional

import asyncssh

from ...core.exceptions import KeyLoadError

logger = logging.getLogger(__name__)


def load_private_key(path: str, passphrase: Optional[str] = None) -> asyncssh.SSHKey:
    """
    Load a private key from a file.

    Args:
        path: Path to the private key file (OpenSSH, PKCS#1/#8 or PuTTY format)
        passphrase: Passphrase for encrypted keys

    Returns:
        The imported private key

    Raises:
        KeyLoadError: If the file is unreadable or its content is not a usable key
    """
    try:
        with open(os.path.expanduser(path), 'rb') as f:
            data = f.read()
    except OSError as e:
        raise KeyLoadError(path, KeyLoadError.UNREADABLE, e.strerror or str(e)) from e

    try:
        key = asyncssh.import_private_key(data, passphrase)
    except (asyncssh.KeyImportError, asyncssh.KeyEncryptionError, ValueError) as e:
        raise KeyLoadError(path, KeyLoadError.UNPARSABLE, str(e)) from e

    logger.debug(
        f"Loaded {key.get_algorithm()} private key from {path}",
        extra={"event": "credentials.loaded", "key_file": path,
               "algorithm": key.get_algorithm()}
    )
    return key
