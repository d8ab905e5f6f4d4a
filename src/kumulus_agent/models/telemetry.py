"""Health report and signed envelope models."""

import time
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from kumulus_agent.models.common import DockerStatus


def _utc_iso(moment: datetime) -> str:
    """Format a UTC datetime as ISO-8601 with millisecond precision and a Z suffix."""
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class HealthReport(BaseModel):
    """Snapshot of host health, built once per collection cycle.

    Field order is the serialization order of the signed message.
    """

    cpu_usage: float = 0.0
    memory_free: str = "0 MB"
    disk_free: str = "0 GB"
    docker_status: DockerStatus = DockerStatus.UNKNOWN
    running_containers: int = 0
    unhealthy_containers: int = 0
    timestamp_unix: int = Field(default_factory=lambda: int(time.time()))
    timestamp_human: str = Field(default_factory=lambda: _utc_iso(datetime.now(UTC)))

    class Config:
        frozen = True

    @classmethod
    def captured_now(cls, **values: object) -> "HealthReport":
        """Build a report whose two timestamps describe the same instant."""
        now = datetime.now(UTC)
        return cls(
            timestamp_unix=int(now.timestamp()),
            timestamp_human=_utc_iso(now),
            **values,
        )

    def to_message(self) -> str:
        """Serialize to the compact JSON string that gets signed."""
        return self.model_dump_json()


class SignedEnvelope(BaseModel):
    """A message paired with its signature and the signer's address."""

    message: str
    signature: str
    address: str
