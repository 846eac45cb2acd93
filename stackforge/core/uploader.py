"""Artifact and template upload with content-hash short-circuit.

Every object is stored with a ``filesha256`` metadata entry.  Before
transferring, the uploader asks for the remote object's metadata; when
the hash matches, the transfer is skipped.  Transfers run through a
bounded pool, and the first failure cancels everything still queued.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, BinaryIO

from stackforge.core.errors import ArtifactUploadError
from stackforge.core.hasher import file_sha256
from stackforge.core.naming import COMPILED_TEMPLATE_FILENAME, NamingResolver
from stackforge.core.provider import ErrorKind, ProviderClient, ProviderError
from stackforge.models.artifacts import ArtifactRef
from stackforge.models.service import DeploymentBucketSpec
from stackforge.models.template import TemplateDocument

logger = logging.getLogger(__name__)

HASH_METADATA_KEY = "filesha256"

# DeploymentBucketSpec field -> PutObject parameter
ENCRYPTION_PARAMETERS: dict[str, str] = {
    "server_side_encryption": "ServerSideEncryption",
    "sse_customer_algorithm": "SSECustomerAlgorithm",
    "sse_customer_key": "SSECustomerKey",
    "sse_customer_key_md5": "SSECustomerKeyMD5",
    "sse_kms_key_id": "SSEKMSKeyId",
}
# HeadObject only accepts the customer-key parameters.
_HEAD_PARAMETERS = ("SSECustomerAlgorithm", "SSECustomerKey", "SSECustomerKeyMD5")


def encryption_params(bucket: DeploymentBucketSpec | None) -> dict[str, str]:
    if bucket is None:
        return {}
    return {
        parameter: getattr(bucket, field)
        for field, parameter in ENCRYPTION_PARAMETERS.items()
        if getattr(bucket, field)
    }


class GuardedStream:
    """File wrapper that remembers read errors.

    Some transports consider a call complete even though the body stream
    failed underneath them.  The uploader checks :attr:`error` after the
    call returns and fails the upload if it is set.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self.error: BaseException | None = None

    def read(self, size: int = -1) -> bytes:
        try:
            return self._stream.read(size)
        except OSError as exc:
            if self.error is None:
                self.error = exc
            raise

    def __getattr__(self, name: str) -> Any:
        return getattr(self._stream, name)


class ArtifactUploader:
    """Pushes archives and the compiled template to the deployment bucket.

    Parameters
    ----------
    client:
        Provider client.
    bucket:
        Deployment bucket name.
    artifact_directory:
        ``{prefix}/{service}/{stage}/{timestamp}-{datetime}``.
    concurrency:
        Maximum transfers in flight; extra uploads queue.
    encryption:
        Custom bucket settings whose encryption parameters are passed
        through verbatim.
    """

    def __init__(
        self,
        client: ProviderClient,
        bucket: str,
        artifact_directory: str,
        *,
        stage: str | None = None,
        region: str | None = None,
        concurrency: int = 3,
        encryption: DeploymentBucketSpec | None = None,
    ) -> None:
        self.client = client
        self.bucket = bucket
        self.artifact_directory = artifact_directory
        self.stage = stage
        self.region = region
        self._semaphore = asyncio.Semaphore(max(1, concurrency))
        self._encryption = encryption_params(encryption)
        self.transfers = 0
        self.skipped = 0

    def key_for(self, filename: str) -> str:
        return NamingResolver.object_key(self.artifact_directory, filename)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def upload(self, artifact: ArtifactRef) -> ArtifactRef:
        key = self.key_for(artifact.name)
        async with self._semaphore:
            await self._put_file(key, artifact.local_path, artifact.content_hash, "application/zip")
        return artifact.with_remote_key(key)

    async def upload_all(self, artifacts: list[ArtifactRef]) -> list[ArtifactRef]:
        """Upload every artifact; the first failure cancels the rest.

        Results come back in the order of *artifacts*.
        """
        if not artifacts:
            return []
        tasks = [asyncio.create_task(self.upload(artifact)) for artifact in artifacts]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        failed = [task for task in tasks if task in done and task.exception() is not None]
        if failed:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raise failed[0].exception()
        return [task.result() for task in tasks]

    async def upload_template(self, template: TemplateDocument, local_path: Path) -> str:
        """Write *template* to *local_path*, then upload it; return its key."""
        template.write(local_path)
        key = self.key_for(COMPILED_TEMPLATE_FILENAME)
        async with self._semaphore:
            await self._put_file(key, local_path, file_sha256(local_path), "application/json")
        return key

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _remote_hash(self, key: str) -> str | None:
        params = {"Bucket": self.bucket, "Key": key}
        params.update({k: v for k, v in self._encryption.items() if k in _HEAD_PARAMETERS})
        try:
            response = await self._request("headObject", params)
        except ProviderError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                return None
            raise ArtifactUploadError(key, f"existence check failed: {exc}") from exc
        metadata = response.get("Metadata") or {}
        return metadata.get(HASH_METADATA_KEY)

    async def _put_file(self, key: str, path: Path, content_hash: str, content_type: str) -> None:
        if await self._remote_hash(key) == content_hash:
            logger.info("%s already uploaded (%s), skipping", key, content_hash[:12])
            self.skipped += 1
            return

        logger.info("Uploading %s to s3://%s/%s", path.name, self.bucket, key)
        try:
            handle = path.open("rb")
        except OSError as exc:
            raise ArtifactUploadError(key, str(exc)) from exc
        with handle:
            body = GuardedStream(handle)
            params: dict[str, Any] = {
                "Bucket": self.bucket,
                "Key": key,
                "Body": body,
                "ContentType": content_type,
                "Metadata": {HASH_METADATA_KEY: content_hash},
                **self._encryption,
            }
            try:
                await self._request("putObject", params)
            except (ProviderError, OSError) as exc:
                raise ArtifactUploadError(key, str(exc)) from exc
            if body.error is not None:
                raise ArtifactUploadError(
                    key, f"stream failed after transfer completed: {body.error}"
                ) from body.error
        self.transfers += 1

    async def _request(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        return await self.client.request(
            "S3", method, params, stage=self.stage, region=self.region
        )
