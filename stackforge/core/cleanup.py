"""Deployment directory listing and stale-artifact removal.

Objects live under ``{prefix}/{service}/{stage}/{timestamp}-{datetime}/``.
Directories are ordered by their millisecond timestamp (ties broken by
name); cleanup keeps the newest ``keep`` directories and deletes every
object of the older ones.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from stackforge.core.errors import DeployError
from stackforge.core.provider import ErrorKind, ProviderClient, ProviderError
from stackforge.models.deployment import DeploymentListing

logger = logging.getLogger(__name__)

DEFAULT_KEEP = 4
DELETE_BATCH_SIZE = 1000
_DIRECTORY = re.compile(r"^(?P<directory>(?P<timestamp>\d+)-[^/]+)/(?P<file>.+)$")


def group_deployments(keys: list[str], root: str) -> list[DeploymentListing]:
    """Group object keys below *root* by deployment directory, oldest first.

    Keys that do not follow the directory layout are ignored.
    """
    prefix = root.rstrip("/") + "/"
    grouped: dict[str, tuple[int, list[str]]] = {}
    for key in keys:
        if not key.startswith(prefix):
            continue
        match = _DIRECTORY.match(key[len(prefix):])
        if match is None:
            continue
        directory = prefix + match.group("directory")
        _, files = grouped.setdefault(directory, (int(match.group("timestamp")), []))
        files.append(match.group("file"))
    return [
        DeploymentListing(directory=directory, timestamp_ms=timestamp, files=sorted(files))
        for directory, (timestamp, files) in sorted(
            grouped.items(), key=lambda item: (item[1][0], item[0])
        )
    ]


def select_stale_keys(keys: list[str], root: str, keep: int = DEFAULT_KEEP) -> list[str]:
    """Object keys belonging to every directory but the newest *keep*."""
    deployments = group_deployments(keys, root)
    stale = deployments[: max(0, len(deployments) - keep)]
    return [
        f"{listing.directory}/{filename}"
        for listing in stale
        for filename in listing.files
    ]


class DeploymentBucketJanitor:
    """Lists and prunes one service/stage prefix of the deployment bucket."""

    def __init__(
        self,
        client: ProviderClient,
        bucket: str,
        root: str,
        *,
        stage: str | None = None,
        region: str | None = None,
    ) -> None:
        self.client = client
        self.bucket = bucket
        self.root = root
        self.stage = stage
        self.region = region

    async def list_keys(self) -> list[str]:
        keys: list[str] = []
        params: dict[str, Any] = {"Bucket": self.bucket, "Prefix": f"{self.root}/"}
        while True:
            try:
                response = await self._request("listObjectsV2", params)
            except ProviderError as exc:
                if exc.kind is ErrorKind.ACCESS_DENIED:
                    raise DeployError(
                        "Could not list objects in the deployment bucket. Make "
                        "sure you have sufficient permissions to access it."
                    ) from exc
                raise
            keys.extend(item["Key"] for item in response.get("Contents") or [])
            token = response.get("NextContinuationToken")
            if not response.get("IsTruncated") or not token:
                return keys
            params = {**params, "ContinuationToken": token}

    async def list_deployments(self) -> list[DeploymentListing]:
        return group_deployments(await self.list_keys(), self.root)

    async def cleanup(self, keep: int = DEFAULT_KEEP) -> list[str]:
        """Delete the objects of all but the newest *keep* deployments."""
        stale = select_stale_keys(await self.list_keys(), self.root, keep)
        if stale:
            logger.info("Removing %d objects of old deployments", len(stale))
            await self.delete_keys(stale)
        return stale

    async def empty(self) -> list[str]:
        """Delete every object under the service/stage prefix."""
        keys = await self.list_keys()
        if keys:
            await self.delete_keys(keys)
        return keys

    async def delete_keys(self, keys: list[str]) -> None:
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            await self._request(
                "deleteObjects",
                {
                    "Bucket": self.bucket,
                    "Delete": {"Objects": [{"Key": key} for key in batch], "Quiet": True},
                },
            )

    async def _request(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        return await self.client.request("S3", method, params, stage=self.stage, region=self.region)
