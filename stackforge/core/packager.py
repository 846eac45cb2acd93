"""Deterministic code archives with content hashing.

Archives are byte-for-byte reproducible: files are added in sorted
order with a fixed timestamp and normalized permissions, so the SHA-256
of the archive only changes when file contents (or the file set) change.
Writing an archive whose bytes already exist on disk is a no-op.
"""

from __future__ import annotations

import fnmatch
import io
import logging
import os
import zipfile
from pathlib import Path, PurePosixPath

from stackforge.compilers.functions import artifact_name_for
from stackforge.core.errors import ConfigurationError, HandlerNotFoundError
from stackforge.core.hasher import file_sha256, sha256_hex
from stackforge.core.naming import NamingResolver
from stackforge.models.artifacts import ArtifactRef
from stackforge.models.service import ServiceSpec

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDES: list[str] = [
    ".git",
    ".gitignore",
    ".DS_Store",
    "serverless.yaml",
    "serverless.yml",
    "serverless.env.yaml",
    "serverless.env.yml",
    "stackforge.yml",
    "stackforge.yaml",
    ".serverless",
    "__pycache__",
    "*.pyc",
]

# 1980-01-01 is the earliest timestamp a zip entry can carry.
_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)


def matches(relative_path: str, pattern: str) -> bool:
    """Whether *relative_path* (posix) is selected by a glob *pattern*.

    A pattern without a slash matches any path component; a pattern with
    a slash is anchored at the service root and also selects everything
    below a matching directory.
    """
    pattern = pattern.strip().rstrip("/")
    if not pattern:
        return False
    if pattern.startswith("./"):
        pattern = pattern[2:]
    if "/" in pattern:
        return fnmatch.fnmatchcase(relative_path, pattern) or fnmatch.fnmatchcase(
            relative_path, pattern + "/*"
        )
    return any(fnmatch.fnmatchcase(part, pattern) for part in PurePosixPath(relative_path).parts)


class Packager:
    """Builds the service archive and per-function archives.

    Parameters
    ----------
    service:
        The service being deployed; ``service.service_path`` is the root
        of the source tree.
    naming:
        Resolver for archive file names.
    build_dir:
        Where archives are written (normally ``<service>/.serverless``).
    """

    def __init__(self, service: ServiceSpec, naming: NamingResolver, build_dir: Path) -> None:
        self.service = service
        self.naming = naming
        self.build_dir = build_dir
        self.root = Path(service.service_path)

    # ------------------------------------------------------------------
    # Handler resolution
    # ------------------------------------------------------------------

    def resolve_handler(self, function_key: str) -> Path:
        """``src/app.handler`` -> ``src/app.py`` (any extension)."""
        function = self.service.get_function(function_key)
        handler = function.handler or ""
        module = handler.rsplit(".", 1)[0] if "." in handler else handler
        if module:
            base = self.root / module
            candidates = sorted(base.parent.glob(f"{base.name}.*")) if base.parent.is_dir() else []
            for candidate in candidates:
                if candidate.is_file():
                    return candidate
            if base.is_dir():
                return base
        raise HandlerNotFoundError(function_key, handler)

    def check_handlers(self, function_keys: list[str]) -> None:
        """Raise for the first unresolvable handler, before anything is written."""
        for function_key in function_keys:
            if self.service.get_function(function_key).package.artifact:
                continue
            self.resolve_handler(function_key)

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def package_all(self, function_keys: list[str] | None = None) -> list[ArtifactRef]:
        """Build every archive needed for *function_keys* (default: all)."""
        keys = list(function_keys) if function_keys is not None else self.service.function_keys()
        self.check_handlers(keys)
        # archive names must be distinct before any of them is written
        for function_key in keys:
            artifact_name_for(self.service, function_key, self.naming)

        artifacts: list[ArtifactRef] = []
        service_artifact: ArtifactRef | None = None
        for function_key in keys:
            if self.service.is_individually_packaged(function_key) or (
                self.service.get_function(function_key).package.artifact
            ):
                artifacts.append(self.build(function_key))
            elif service_artifact is None:
                service_artifact = self.build(None)
                artifacts.insert(0, service_artifact)
        return artifacts

    def build(self, function_key: str | None = None) -> ArtifactRef:
        """Build (or reuse a prebuilt) archive for one function or the service."""
        prebuilt = self._prebuilt_path(function_key)
        if prebuilt is not None:
            return self._ref(prebuilt, function_key, file_sha256(prebuilt))

        if function_key is None:
            name = self.naming.service_artifact_name()
            include, exclude = self.service.package.include, self.service.package.exclude
        else:
            name = artifact_name_for(self.service, function_key, self.naming)
            package = self.service.get_function(function_key).package
            include = [*self.service.package.include, *package.include]
            exclude = [*self.service.package.exclude, *package.exclude]

        data = self.archive_bytes(self.collect_files(include, exclude))
        digest = sha256_hex(data)
        path = self.build_dir / name
        if path.is_file() and file_sha256(path) == digest:
            logger.debug("Archive %s unchanged (%s)", name, digest[:12])
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            logger.info("Packaged %s (%d bytes)", name, len(data))
        return self._ref(path, function_key, digest)

    def collect_files(self, include: list[str], exclude: list[str]) -> list[str]:
        """Sorted posix paths (relative to the service root) to archive.

        Include patterns win over exclude patterns.
        """
        excludes = [*DEFAULT_EXCLUDES, *exclude]
        build_dir = self._relative_build_dir()
        if build_dir:
            excludes.append(build_dir)

        selected: list[str] = []
        for directory, dirnames, filenames in os.walk(self.root):
            dirnames.sort()
            base = Path(directory).relative_to(self.root)
            for filename in sorted(filenames):
                relative = (base / filename).as_posix()
                excluded = any(matches(relative, pattern) for pattern in excludes)
                if not excluded or any(matches(relative, pattern) for pattern in include):
                    selected.append(relative)
        return sorted(selected)

    def archive_bytes(self, relative_paths: list[str]) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for relative in relative_paths:
                source = self.root / relative
                info = zipfile.ZipInfo(relative, date_time=_FIXED_DATE_TIME)
                info.compress_type = zipfile.ZIP_DEFLATED
                mode = source.stat().st_mode
                info.external_attr = ((mode | 0o444) & 0xFFFF) << 16
                archive.writestr(info, source.read_bytes())
        return buffer.getvalue()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _prebuilt_path(self, function_key: str | None) -> Path | None:
        if function_key is None:
            declared = self.service.package.artifact
        else:
            declared = self.service.get_function(function_key).package.artifact
        if not declared:
            return None
        path = Path(declared)
        if not path.is_absolute():
            path = self.root / path
        if not path.is_file():
            raise ConfigurationError(f'Package artifact "{declared}" does not exist')
        return path

    def _relative_build_dir(self) -> str | None:
        try:
            return self.build_dir.resolve().relative_to(self.root.resolve()).as_posix()
        except ValueError:
            return None

    def _ref(self, path: Path, function_key: str | None, digest: str) -> ArtifactRef:
        return ArtifactRef(
            name=path.name,
            local_path=path,
            content_hash=digest,
            size_bytes=path.stat().st_size,
            function_key=function_key,
        )
