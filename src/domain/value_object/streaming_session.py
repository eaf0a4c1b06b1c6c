"""Value objects for remote-display sessions."""

from dataclasses import dataclass
from urllib.parse import quote

# Characters left unescaped by JavaScript's encodeURIComponent, which DCV web clients decode against
_URI_COMPONENT_SAFE = "-_.!~*'()"


@dataclass(frozen=True)
class StreamingSession:
    """Deterministic display session of a user on their streaming host."""

    user_id: str
    owner: str = "Administrator"

    def __post_init__(self) -> None:
        """Validate session identity."""
        if not self.user_id:
            raise ValueError("user_id cannot be empty")
        if not self.owner:
            raise ValueError("owner cannot be empty")

    @property
    def name(self) -> str:
        return f"user-{self.user_id}-session"

    def streaming_url(self, public_ip: str, port: int = 8443) -> str:
        if not public_ip:
            raise ValueError("public_ip cannot be empty")
        return f"https://{public_ip}:{port}?session-id={quote(self.name, safe=_URI_COMPONENT_SAFE)}"
