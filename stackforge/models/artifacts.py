"""Code artifact references produced by the packager."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict


class ArtifactRef(BaseModel):
    """One deployable archive.

    ``content_hash`` is the SHA-256 of the archive bytes, never of file
    metadata, so identical code always maps to the same remote object.
    ``remote_key`` stays empty until the uploader resolves it.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    local_path: Path
    content_hash: str
    size_bytes: int
    function_key: str | None = None  # None for the whole-service artifact
    remote_key: str = ""

    def with_remote_key(self, key: str) -> ArtifactRef:
        return self.model_copy(update={"remote_key": key})

    @property
    def is_service_artifact(self) -> bool:
        return self.function_key is None
