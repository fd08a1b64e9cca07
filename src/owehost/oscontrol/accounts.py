"""POSIX user and group management for tenants."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ..models import Identity
from .runner import CommandRunner

LOGGER = logging.getLogger(__name__)

LOGIN_SHELL = "/bin/bash"
# useradd/groupadd: name or id already in use
EXIT_ALREADY_EXISTS = 9
# userdel/groupdel: specified user or group does not exist
EXIT_DOES_NOT_EXIST = 6


@dataclass(slots=True)
class AccountManager:
    """Create and remove the POSIX user and group of a tenant."""

    runner: CommandRunner
    id_bin: str = "id"
    useradd_bin: str = "useradd"
    groupadd_bin: str = "groupadd"
    userdel_bin: str = "userdel"
    groupdel_bin: str = "groupdel"

    def user_exists(self, uid: int) -> bool:
        """Return True when ``id <uid>`` resolves."""
        return self.runner.succeeds([self.id_bin, str(uid)])

    def ensure_user(self, identity: Identity, home: Path) -> bool:
        """Create the group and user of *identity*; return False when the uid exists."""
        if self.user_exists(identity.uid):
            return False
        self.runner.run(
            [self.groupadd_bin, "--gid", str(identity.gid), identity.name],
            ok_codes=(0, EXIT_ALREADY_EXISTS),
        )
        self.runner.run(
            [
                self.useradd_bin,
                "--uid",
                str(identity.uid),
                "--gid",
                str(identity.gid),
                "--home-dir",
                str(home),
                "--shell",
                LOGIN_SHELL,
                "--no-create-home",
                identity.name,
            ],
            ok_codes=(0, EXIT_ALREADY_EXISTS),
        )
        LOGGER.info("Created POSIX user %s (uid %s)", identity.name, identity.uid)
        return True

    def remove_user(self, name: str) -> None:
        """Remove the user and group called *name*; absent entries are ignored."""
        self.runner.run([self.userdel_bin, name], ok_codes=(0, EXIT_DOES_NOT_EXIST))
        self.runner.run([self.groupdel_bin, name], ok_codes=(0, EXIT_DOES_NOT_EXIST))
        LOGGER.info("Removed POSIX user %s", name)


__all__ = ["AccountManager", "EXIT_ALREADY_EXISTS", "EXIT_DOES_NOT_EXIST", "LOGIN_SHELL"]
