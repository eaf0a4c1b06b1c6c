from dataclasses import dataclass, field


@dataclass
class EbsVolumeConfig:
    user_id: str
    availability_zone: str
    size: int | None = None
    volume_type: str | None = None
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class EbsVolumeDto:
    volume_id: str
    state: str
    size: int | None = None
    volume_type: str | None = None
    availability_zone: str | None = None
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class EbsVolumeAttachment:
    """Outcome of attaching a data volume to an instance.

    ``created`` tells whether the volume was created for this attachment or an existing
    user volume was reused; compensation only deletes volumes it created.
    """

    volume_id: str
    status: str
    created: bool = True
