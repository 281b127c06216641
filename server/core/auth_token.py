"""Shared-secret token for the HTTP surface.

If ``AUTH_TOKEN`` is unset a random token is generated once per process.
The token is never logged; when ``AUTH_TOKEN_FILE`` is set it is written
there (mode 0600) so the local UI can pick it up.
"""

import os
import secrets
from pathlib import Path

from core.config import Settings
from core.logging import get_logger

logger = get_logger(__name__)


def resolve_auth_token(settings: Settings) -> str:
    token = settings.auth_token or secrets.token_hex(32)

    if settings.auth_token_file:
        path = Path(settings.auth_token_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(token)
        os.chmod(path, 0o600)
        logger.info("Auth token written", path=str(path))

    logger.info("Auth token ready", generated=settings.auth_token is None)
    return token
