"""Module for authenticating git operations."""

from dataclasses import dataclass, field
import logging
from pathlib import Path
import shlex
from urllib.parse import urlsplit, urlunsplit, quote

_LOGGER = logging.getLogger(__name__)

REDACTED = "***"
DEFAULT_TOKEN_USERNAME = "x-access-token"


@dataclass(frozen=True)
class GitCredentials:
    """Credentials used for cloning and pushing.

    An ssh key is used for ssh remotes through `GIT_SSH_COMMAND`. A token is
    added to https remote URLs as the password.
    """

    ssh_key_path: Path | None = None
    """Path to a private key for ssh remotes."""

    token: str | None = field(default=None, repr=False)
    """Token for https remotes."""

    username: str = DEFAULT_TOKEN_USERNAME
    """Username paired with the token."""

    def env(self) -> dict[str, str]:
        """Return the environment for git subprocesses."""
        env = {"GIT_TERMINAL_PROMPT": "0"}
        if self.ssh_key_path:
            env["GIT_SSH_COMMAND"] = " ".join(
                [
                    "ssh",
                    "-i",
                    shlex.quote(str(self.ssh_key_path)),
                    "-o",
                    "IdentitiesOnly=yes",
                ]
            )
        return env

    def url(self, url: str) -> str:
        """Return the URL with the token applied for https remotes."""
        if not self.token:
            return url
        parts = urlsplit(url)
        if parts.scheme != "https" or "@" in parts.netloc:
            return url
        netloc = f"{quote(self.username, safe='')}:{quote(self.token, safe='')}@{parts.netloc}"
        return urlunsplit(parts._replace(netloc=netloc))

    def redact(self, message: str) -> str:
        """Remove the token from a message before it is logged or raised."""
        if not self.token:
            return message
        for secret in {self.token, quote(self.token, safe="")}:
            message = message.replace(secret, REDACTED)
        return message
