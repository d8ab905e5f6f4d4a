"""Tenant environment models for the VM control API."""

from pydantic import BaseModel, Field

from kumulus_agent.models.common import EnvironmentStatus

# Sizes as the container engine parses them, e.g. "512m", "5g", "1GiB".
SIZE_PATTERN = r"^\d+(\.\d+)? ?[kKmMgGtTpP]?[iI]?[bB]?$"

# Order matters: the first missing field is the one reported back.
REQUIRED_REQUEST_FIELDS: tuple[str, ...] = ("username", "sshKey", "cpu", "memory", "disk")


class EnvironmentRequest(BaseModel):
    """Request to provision a tenant environment.

    Example:
        ```python
        request = EnvironmentRequest(
            username="alice",
            sshKey="ssh-ed25519 AAAA... alice@laptop",
            cpu=1,
            memory="512m",
            disk="5g",
        )
        ```
    """

    username: str
    ssh_key: str = Field(alias="sshKey")
    cpu: float = Field(gt=0)
    memory: str = Field(pattern=SIZE_PATTERN)
    disk: str = Field(pattern=SIZE_PATTERN)

    class Config:
        populate_by_name = True
        frozen = True


class TenantEnvironment(BaseModel):
    """A provisioned tenant environment.

    The id doubles as the container name, so later lifecycle calls look the
    instance up by it. The container engine stays the source of truth for
    status; nothing here is persisted.

    Attributes:
        id: UUID of the environment (also the container name)
        image_name: Tag of the per-tenant image
        ssh_port: Host port mapped to the container's SSH daemon
        owner: Login user created inside the container
        status: Lifecycle status
    """

    id: str
    image_name: str = Field(alias="imageName")
    ssh_port: int = Field(alias="sshPort")
    owner: str
    status: EnvironmentStatus = EnvironmentStatus.BUILDING

    class Config:
        populate_by_name = True
