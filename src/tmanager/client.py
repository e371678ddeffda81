from mimetypes import guess_type
from typing import Optional
from urllib.parse import quote

import asyncio
import hashlib
import logging
import os

import aiohttp

from .constants import CHUNK_SIZE, HASH_CHUNK_SIZE
from .exceptions import UnexpectedStatusException
from .scheduler import TransferDirection, TransferJob, TransferStream
from .stream import AsyncInstrumentedStream, InstrumentedStream

AUTO_CONTENT_TYPE = "b2/x-auto"


def sha1_of_stream(stream) -> str:
    """
    Read the stream to the end and return its SHA1 as lowercase hex.
    """
    digest = hashlib.sha1()
    while True:
        chunk = stream.read(HASH_CHUNK_SIZE)
        if not chunk:
            break
        digest.update(chunk)
    return digest.hexdigest()


class ObjectStoreClient:
    """
    Async object-storage transfers using aiohttp.

    Works against an already authorized upload URL and download URL; the
    token is sent as-is in the Authorization header.
    """

    def __init__(
            self,
            upload_url: Optional[str] = None,
            download_url: Optional[str] = None,
            bucket: Optional[str] = None,
            token: Optional[str] = None,
            request_timeout: Optional[float] = None
        ) -> None:

        self._upload_url = upload_url
        self._download_url = download_url.rstrip("/") if download_url else download_url
        self._bucket = bucket
        self._token = token
        self._request_timeout = request_timeout
        self._session: aiohttp.ClientSession = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
        return False

    def _get_session(self) -> aiohttp.ClientSession:
        if not self._session:
            self._session = aiohttp.ClientSession()
        return self._session

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self._request_timeout)

    def _auth_headers(self) -> dict:
        if self._token:
            return {"Authorization": self._token}
        return {}

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def transfer(self, job: TransferJob, stream: TransferStream) -> None:
        if job.direction == TransferDirection.UPLOAD:
            await self.upload(job, stream)
        else:
            await self.download(job, stream)

    async def upload(self, job: TransferJob, stream: InstrumentedStream) -> None:
        """
        Upload a local file.

        - Hashes the stream on a worker thread, the checksum must be sent up front
        - Seeks back to the start, which restarts the bandwidth history
        - Sends the stream as the request body
        """

        if self._upload_url is None:
            raise ValueError("No upload URL configured")

        hashing = asyncio.ensure_future(asyncio.to_thread(sha1_of_stream, stream))
        try:
            sha1 = await asyncio.shield(hashing)
        except asyncio.CancelledError:
            # The reading thread cannot be interrupted, the stream must outlive it.
            logging.debug(f"{job.job_id=} cancelled while hashing, waiting for the reader")
            await asyncio.gather(hashing, return_exceptions=True)
            raise
        logging.debug(f"{job.job_id=} sha1={sha1}")
        stream.seek(0)

        content_type = guess_type(job.local_path)[0] or AUTO_CONTENT_TYPE
        last_modified_millis = os.stat(job.local_path).st_mtime_ns // 1_000_000
        headers = {
            **self._auth_headers(),
            "X-Bz-File-Name": quote(job.destination, safe="/"),
            "Content-Type": content_type,
            "Content-Length": str(stream.length),
            "X-Bz-Content-Sha1": sha1,
            "X-Bz-Info-src_last_modified_millis": str(last_modified_millis),
        }

        session = self._get_session()
        async with session.post(self._upload_url, data=stream, headers=headers, timeout=self._timeout()) as resp:
            if resp.status < 200 or resp.status >= 300:
                raise UnexpectedStatusException(
                    resp.status,
                    job.job_id,
                    expected=(200,),
                    url=self._upload_url,
                    message=await resp.text()
                )

    async def download(self, job: TransferJob, stream: AsyncInstrumentedStream) -> None:
        if self._download_url is None or self._bucket is None:
            raise ValueError("No download URL or bucket configured")

        url = f"{self._download_url}/file/{self._bucket}/{quote(job.destination, safe='/')}"
        session = self._get_session()
        async with session.get(url, headers=self._auth_headers(), timeout=self._timeout()) as resp:
            if resp.status != 200:
                raise UnexpectedStatusException(resp.status, job.job_id, expected=(200,), url=url)

            if "Content-Length" in resp.headers:
                stream.set_expected_length(int(resp.headers["Content-Length"]))

            async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                await stream.write(chunk)

        await stream.flush()


__all__ = ["ObjectStoreClient", "sha1_of_stream"]
