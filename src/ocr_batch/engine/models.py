from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

LOCK_SUFFIX = ".lock"
RESULT_SUFFIX = ".txt"


@dataclass(frozen=True)
class Resource:
    """
    A single image file to OCR. Lock and result locations are derived from the path,
    nothing about processing state is stored on the object.
    """

    path: Path

    @classmethod
    def from_path(cls, path: str | Path) -> Resource:
        return cls(Path(path).resolve())

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def extension(self) -> str:
        return self.path.suffix.lower().lstrip(".")

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + LOCK_SUFFIX)

    @property
    def result_path(self) -> Path:
        return self.path.with_name(self.path.stem + RESULT_SUFFIX)

    def has_result(self) -> bool:
        return self.result_path.exists()


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    LOCKED = "locked"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class JobOutcome:
    """Per-resource result of one run. Exactly one per discovered resource."""

    kind: OutcomeKind
    resource: Resource
    text: str | None = None
    output_path: Path | None = None
    reason: str | None = None

    @classmethod
    def success(cls, resource: Resource, text: str, output_path: Path) -> JobOutcome:
        return cls(OutcomeKind.SUCCESS, resource, text=text, output_path=output_path)

    @classmethod
    def failure(cls, resource: Resource, reason: str) -> JobOutcome:
        return cls(OutcomeKind.FAILURE, resource, reason=reason)

    @classmethod
    def locked(cls, resource: Resource, reason: str) -> JobOutcome:
        return cls(OutcomeKind.LOCKED, resource, reason=reason)

    @classmethod
    def skipped(cls, resource: Resource, existing_output_path: Path) -> JobOutcome:
        return cls(OutcomeKind.SKIPPED, resource, output_path=existing_output_path)

    def to_json_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "file": str(self.resource.path),
        }
        if self.output_path is not None:
            data["output_file"] = str(self.output_path)
        if self.reason is not None:
            data["reason"] = self.reason
        return data


@dataclass
class RunSummary:
    outcomes: list[JobOutcome] = field(default_factory=list)

    def add(self, outcome: JobOutcome) -> None:
        self.outcomes.append(outcome)

    def extend(self, outcomes: list[JobOutcome]) -> None:
        self.outcomes.extend(outcomes)

    def count(self, kind: OutcomeKind) -> int:
        return sum(1 for o in self.outcomes if o.kind is kind)

    @property
    def successful(self) -> int:
        return self.count(OutcomeKind.SUCCESS)

    @property
    def failed(self) -> int:
        return self.count(OutcomeKind.FAILURE)

    @property
    def skipped(self) -> int:
        return self.count(OutcomeKind.SKIPPED)

    @property
    def locked(self) -> int:
        return self.count(OutcomeKind.LOCKED)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    def counts(self) -> dict[str, int]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "locked": self.locked,
        }


@dataclass
class ProxyEntry:
    """
    One egress point. Mutated only by ProxyPoolManager (under its lock).
    """

    ip: str
    port: str
    fails: int = 0
    last_used: int = 0  # epoch millis

    @property
    def address(self) -> str:
        return f"{self.ip}:{self.port}"

    @property
    def url(self) -> str:
        return f"http://{self.ip}:{self.port}"

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "ip": self.ip,
            "port": self.port,
            "fails": self.fails,
            "lastUsed": self.last_used,
        }

    @classmethod
    def from_json_dict(cls, data: dict[str, Any]) -> ProxyEntry:
        return cls(
            ip=str(data["ip"]),
            port=str(data["port"]),
            fails=int(data.get("fails", 0) or 0),
            last_used=int(data.get("lastUsed", 0) or 0),
        )
