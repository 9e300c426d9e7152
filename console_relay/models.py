"""Data model: canonical log entries, targets and status snapshots."""

from dataclasses import asdict, dataclass
from enum import Enum


class EntryKind(str, Enum):
    CONSOLE = "CONSOLE"
    LOG = "LOG"


@dataclass(frozen=True)
class LogEntry:
    timestamp: str
    kind: EntryKind
    level: str
    text: str
    url: str | None = None
    line: int | None = None
    col: int | None = None
    href: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "LogEntry":
        return cls(
            timestamp=data["timestamp"],
            kind=EntryKind(data.get("kind", EntryKind.LOG.value)),
            level=data.get("level", "info"),
            text=data.get("text", ""),
            url=data.get("url"),
            line=data.get("line"),
            col=data.get("col"),
            href=data.get("href"),
        )


@dataclass(frozen=True)
class Target:
    id: str
    title: str
    url: str
    type: str

    @classmethod
    def from_dict(cls, data: dict) -> "Target":
        return cls(
            id=data.get("id", ""),
            title=data.get("title", ""),
            url=data.get("url", ""),
            type=data.get("type", ""),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SessionStatus:
    host: str
    port: int
    connected: bool = False
    target: Target | None = None
    browser_version: str | None = None

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "connected": self.connected,
            "target": self.target.to_dict() if self.target else None,
            "browser_version": self.browser_version,
        }


@dataclass(frozen=True)
class BufferStats:
    size: int
    capacity: int
    total_received: int
    oldest_timestamp: str | None
    newest_timestamp: str | None
    persist_dir: str | None

    def to_dict(self) -> dict:
        return asdict(self)
