"""Build-spec rendering for per-tenant SSH images."""

import base64
import binascii
import logging
import re
import struct

from kumulus_agent.core.config import Settings, get_settings
from kumulus_agent.core.errors import ValidationError

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")

# Accounts that already exist in the base image or would grant root.
RESERVED_USERNAMES = frozenset(
    {"root", "daemon", "bin", "sys", "sync", "nobody", "sshd", "sudo", "_apt", "ubuntu"}
)

SSH_KEY_TYPES = frozenset(
    {
        "ssh-ed25519",
        "ssh-rsa",
        "ecdsa-sha2-nistp256",
        "ecdsa-sha2-nistp384",
        "ecdsa-sha2-nistp521",
        "sk-ssh-ed25519@openssh.com",
        "sk-ecdsa-sha2-nistp256@openssh.com",
    }
)

SSH_KEY_PATTERN = re.compile(
    r"^(?P<type>[a-z0-9@.-]+) (?P<body>[A-Za-z0-9+/]+={0,2})(?: (?P<comment>[\x20-\x7e]*))?$"
)


def validate_username(username: str) -> str:
    """Check a login name against the allow-list.

    Raises:
        ValidationError: If the name could break out of the build spec or
            collides with a system account
    """
    if not USERNAME_PATTERN.fullmatch(username):
        raise ValidationError(
            "Invalid username: use lowercase letters, digits, '_' or '-', "
            "starting with a letter or '_' (max 32 characters)",
            field="username",
        )
    if username in RESERVED_USERNAMES:
        raise ValidationError(f"Username is reserved: {username}", field="username")
    return username


def validate_ssh_public_key(ssh_key: str) -> str:
    """Check an OpenSSH public key line.

    The base64 body must decode and must name the same key type as the
    prefix. Surrounding whitespace is stripped.

    Returns:
        The normalized key line

    Raises:
        ValidationError: If the key is not a single well-formed public key
    """
    key = ssh_key.strip()
    match = SSH_KEY_PATTERN.fullmatch(key)
    if not match or match.group("type") not in SSH_KEY_TYPES:
        raise ValidationError("Invalid SSH public key format", field="sshKey")

    try:
        blob = base64.b64decode(match.group("body"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Invalid SSH public key encoding", field="sshKey") from e

    if len(blob) < 4:
        raise ValidationError("Invalid SSH public key encoding", field="sshKey")
    (type_length,) = struct.unpack(">I", blob[:4])
    embedded_type = blob[4 : 4 + type_length].decode("ascii", errors="replace")
    if embedded_type != match.group("type"):
        raise ValidationError("SSH public key type does not match its body", field="sshKey")

    return key


class ImageBuilder:
    """Renders the container build spec for one tenant.

    The spec installs an SSH daemon, creates the tenant's login user with
    passwordless sudo, installs the given public key as the only authorized
    key, turns off password and root login and runs sshd in the foreground.
    The key travels base64-encoded so no quoting survives into the shell.

    Rendering is deterministic: the same (username, key) pair always yields
    byte-identical output.

    Example:
        ```python
        builder = ImageBuilder()
        spec = builder.render_build_spec("alice", "ssh-ed25519 AAAAC3Nza... alice@laptop")
        ```
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def image_name(self, env_id: str) -> str:
        """Tag of the image built for environment ``env_id``."""
        return f"{self.settings.image_prefix}-{env_id}"

    def render_build_spec(self, username: str, ssh_key: str) -> str:
        """Render the Dockerfile for a tenant environment.

        Args:
            username: Login user to create
            ssh_key: OpenSSH public key authorized for that user

        Returns:
            Dockerfile content as string

        Raises:
            ValidationError: If the username or key fails validation
        """
        username = validate_username(username)
        ssh_key = validate_ssh_public_key(ssh_key)
        encoded_key = base64.b64encode(ssh_key.encode("ascii")).decode("ascii")
        ssh_port = self.settings.container_ssh_port
        home = f"/home/{username}"

        logger.info(f"Rendering build spec for user: {username}")

        dockerfile = f"""# Kumulus Tenant Environment
# User: {username}
# Auto-generated - do not edit manually

FROM {self.settings.base_image}

# Install SSH server and sudo
RUN apt-get update && \\
    DEBIAN_FRONTEND=noninteractive apt-get install -y --no-install-recommends openssh-server sudo && \\
    rm -rf /var/lib/apt/lists/*

# Privilege separation directory for sshd
RUN mkdir -p /run/sshd && chmod 0755 /run/sshd

# Login user with sudo rights
RUN useradd -m -s /bin/bash {username} && \\
    usermod -aG sudo {username} && \\
    echo '{username} ALL=(ALL) NOPASSWD:ALL' > /etc/sudoers.d/{username} && \\
    chmod 0440 /etc/sudoers.d/{username}

# Authorized key (base64 encoded)
RUN mkdir -p {home}/.ssh && \\
    echo '{encoded_key}' | base64 -d > {home}/.ssh/authorized_keys && \\
    chmod 700 {home}/.ssh && \\
    chmod 600 {home}/.ssh/authorized_keys && \\
    chown -R {username}:{username} {home}/.ssh

# Key-only login for this user
RUN printf '%s\\n' \\
    'PubkeyAuthentication yes' \\
    'PasswordAuthentication no' \\
    'KbdInteractiveAuthentication no' \\
    'PermitRootLogin no' \\
    'AllowUsers {username}' > /etc/ssh/sshd_config.d/00-kumulus.conf

EXPOSE {ssh_port}

CMD ["/usr/sbin/sshd", "-D", "-p", "{ssh_port}"]
"""
        return dockerfile


# Global builder instance
_image_builder: ImageBuilder | None = None


def get_image_builder() -> ImageBuilder:
    """Get the global ImageBuilder instance."""
    global _image_builder
    if _image_builder is None:
        _image_builder = ImageBuilder()
    return _image_builder
