"""Artifacts and deployment requests."""

from __future__ import annotations

from collections.abc import Iterator
from enum import Enum

from pydantic import Field

from deployguard.domain.models.base import generate_id, ValueObject


class ArtifactKind(str, Enum):
    """Whether an artifact is executable source or declarative metadata."""

    SOURCE = "source"
    METADATA = "metadata"


class Artifact(ValueObject):
    """A single named unit of content being deployed."""

    name: str
    kind: ArtifactKind
    content: str

    @property
    def component_name(self) -> str:
        """Name without file extension (``AccountService.cls`` -> ``AccountService``)."""
        return self.name.rsplit(".", 1)[0] if "." in self.name else self.name


class ArtifactBundle(ValueObject):
    """Named source files plus named metadata files."""

    sources: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, str] = Field(default_factory=dict)

    def iter_artifacts(self) -> Iterator[Artifact]:
        for name, content in self.sources.items():
            yield Artifact(name=name, kind=ArtifactKind.SOURCE, content=content)
        for name, content in self.metadata.items():
            yield Artifact(name=name, kind=ArtifactKind.METADATA, content=content)

    @property
    def names(self) -> list[str]:
        return list(self.sources) + list(self.metadata)

    @property
    def is_empty(self) -> bool:
        return not self.sources and not self.metadata

    def with_source(self, name: str, content: str) -> ArtifactBundle:
        """Return a copy with one source artifact replaced or added."""
        return self.model_copy(update={"sources": {**self.sources, name: content}})


class DeploymentOptions(ValueObject):
    """Per-request switches that relax individual pipeline stages."""

    skip_snapshot: bool = False
    skip_validation: bool = False
    skip_tests: bool = False
    force_outside_window: bool = False


class DeploymentRequest(ValueObject):
    """Immutable description of one requested deployment."""

    request_id: str = Field(default_factory=lambda: generate_id("request"))
    artifacts: ArtifactBundle
    target: str = Field(..., min_length=1)
    options: DeploymentOptions = Field(default_factory=DeploymentOptions)
    skip_quality_gate: bool = False
    requested_by: str = ""
    description: str = ""
