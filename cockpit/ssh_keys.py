"""
Managed SSH key for cloning SSH-style repository URLs inside a sprite.

Only a key created by `cockpit setup-ssh` is ever uploaded. It is recognised
by the comment prefix in its public half, and the private half must
reproduce the public key material. Provisioning never generates a key.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from pathlib import Path

from cockpit.errors import SshKeyError
from cockpit.runner import ProcessRunner

logger = logging.getLogger(__name__)

KEY_NAME = "cockpit_ed25519"
COMMENT_PREFIX = "cockpit-managed"

SETUP_HINT = 'Run "cockpit setup-ssh" to create one, then add the public key to your git host.'


def repo_needs_ssh(repo_url: str) -> bool:
    return repo_url.startswith("git@") or repo_url.startswith("ssh://")


@dataclass
class ManagedKey:
    private_path: Path
    public_path: Path
    public_key: str

    @property
    def comment(self) -> str:
        parts = self.public_key.split(None, 2)
        return parts[2] if len(parts) == 3 else ""


def _key_material(public_key: str) -> tuple[str, str]:
    parts = public_key.split()
    if len(parts) < 2:
        return "", ""
    return parts[0], parts[1]


class SshKeyManager:
    def __init__(self, runner: ProcessRunner, ssh_dir: Path):
        self.runner = runner
        self.ssh_dir = ssh_dir

    @property
    def private_path(self) -> Path:
        return self.ssh_dir / KEY_NAME

    @property
    def public_path(self) -> Path:
        return self.ssh_dir / f"{KEY_NAME}.pub"

    async def verify(self) -> ManagedKey:
        if not self.private_path.is_file() or not self.public_path.is_file():
            raise SshKeyError(f"No managed SSH key at {self.private_path}. {SETUP_HINT}")

        public_key = self.public_path.read_text().strip()
        key = ManagedKey(self.private_path, self.public_path, public_key)
        if not key.comment.startswith(COMMENT_PREFIX):
            raise SshKeyError(
                f"{self.public_path} is not a cockpit-managed key (comment {key.comment!r}). {SETUP_HINT}"
            )

        derived = await self.runner.run(
            "ssh-keygen", ["-y", "-f", str(self.private_path)], stdio="pipe", dry_run=False
        )
        if derived.code != 0:
            raise SshKeyError(f"Cannot read {self.private_path}: {derived.output.strip()}. {SETUP_HINT}")
        if _key_material(derived.stdout) != _key_material(public_key):
            raise SshKeyError(
                f"{self.public_path} does not match {self.private_path}. "
                'Run "cockpit setup-ssh --force" to regenerate.'
            )
        return key

    async def generate(self, overwrite: bool = False) -> ManagedKey:
        if self.private_path.exists() and not overwrite:
            raise SshKeyError(f"{self.private_path} already exists; pass --force to replace it.")

        self.ssh_dir.mkdir(parents=True, exist_ok=True)
        self.ssh_dir.chmod(0o700)
        for path in (self.private_path, self.public_path):
            path.unlink(missing_ok=True)

        comment = f"{COMMENT_PREFIX} {socket.gethostname()}"
        await self.runner.require_ok(
            "ssh-keygen",
            ["-q", "-t", "ed25519", "-N", "", "-C", comment, "-f", str(self.private_path)],
            stdio="pipe",
            dry_run=False,
        )
        logger.info("generated managed ssh key path=%s", self.private_path)
        return await self.verify()
