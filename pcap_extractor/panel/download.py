"""Request a PCAP extraction, poll it to completion and download the result.

This is the behaviour of the dashboard download panel: one ``request`` query,
then a ``status`` query every ten seconds until the execution leaves the
``RUNNING`` state. Polls never overlap; the next one is scheduled only after
the previous one has returned.
"""
from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping
from urllib.parse import unquote, urlparse

import httpx
import pandas as pd

from pcap_extractor.domain import ACTION_REQUEST, ACTION_STATUS, ExecutionStatus

from .client import DatasourceQueryClient, PanelQueryError, QueryTemplate
from .extract import ExtractDataError, transform_extract_data

logger = logging.getLogger(__name__)

POLL_INTERVAL_SEC = 10.0
DEFAULT_FILENAME = "extract.pcapng"
JOIN_TIMEOUT_SEC = 5.0


class DownloadState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    DOWNLOADED = "downloaded"
    ERROR = "error"


def new_job_id() -> str:
    return f"run-{int(time.time() * 1000)}"


class ArtifactFetcher:
    """Saves a presigned URL's object into a local directory."""

    def __init__(
        self,
        output_dir: str | Path,
        *,
        timeout: float = 300.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._output_dir = Path(output_dir)
        self._client = http_client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._owns_client = http_client is None

    @staticmethod
    def filename_for(url: str) -> str:
        name = Path(unquote(urlparse(url).path)).name
        return name or DEFAULT_FILENAME

    def fetch(self, url: str) -> Path:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        target = self._output_dir / self.filename_for(url)
        with self._client.stream("GET", url) as response:
            response.raise_for_status()
            with target.open("wb") as fp:
                for chunk in response.iter_bytes():
                    fp.write(chunk)
        logger.info("Download finished: %s", target)
        return target

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


class PcapDownload:
    """Drives one extraction job from request to downloaded file."""

    def __init__(
        self,
        client: DatasourceQueryClient,
        datasource_uid: str | None,
        fetcher: ArtifactFetcher,
        *,
        interval: float = POLL_INTERVAL_SEC,
        job_id_factory: Callable[[], str] = new_job_id,
    ) -> None:
        self._client = client
        self._datasource_uid = datasource_uid
        self._fetcher = fetcher
        self._interval = interval
        self._job_id_factory = job_id_factory

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._done = threading.Event()
        self._thread: threading.Thread | None = None
        self._cancelled = False

        self._state = DownloadState.IDLE
        self._error: str | None = None
        self._job_id: str | None = None
        self._download_url: str | None = None
        self._path: Path | None = None

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------
    @property
    def state(self) -> DownloadState:
        return self._state

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def job_id(self) -> str | None:
        return self._job_id

    @property
    def download_url(self) -> str | None:
        return self._download_url

    @property
    def path(self) -> Path | None:
        return self._path

    def _is_current(self, job_id: str | None) -> bool:
        return job_id is None or (not self._cancelled and job_id == self._job_id)

    def _finish(self, state: DownloadState, error: str | None = None, *, job_id: str | None = None) -> None:
        with self._lock:
            # A poll that outlived cancel() must not touch the next run.
            if not self._is_current(job_id):
                logger.debug("Ignoring outcome of cancelled job %s", job_id)
                return
            self._state = state
            self._error = error
        self._stop.set()
        self._done.set()

    def _fail(self, message: str, *, job_id: str | None = None) -> None:
        logger.error("%s", message)
        self._finish(DownloadState.ERROR, message, job_id=job_id)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def start_from_frame(self, frame: pd.DataFrame | None) -> str | None:
        """Build the extraction map from panel data, then :meth:`start`."""

        try:
            extract = transform_extract_data(frame)
        except ExtractDataError as exc:
            self._fail(str(exc))
            return None
        return self.start(extract)

    def start(self, extract: Mapping[str, list[int]]) -> str | None:
        """Submit the extraction and start polling; returns the job id."""

        with self._lock:
            if self._state is DownloadState.PROCESSING:
                raise RuntimeError("a download is already in progress")
            self._state = DownloadState.PROCESSING
            self._cancelled = False
            self._error = None
            self._download_url = None
            self._path = None
            self._stop = threading.Event()
        self._done.clear()

        if not self._datasource_uid:
            self._fail("Failed to request PCAP extraction: PCAP Extractor data source not configured")
            return None

        job_id = self._job_id_factory()
        self._job_id = job_id
        template = QueryTemplate(self._datasource_uid, ACTION_REQUEST, job_id, dict(extract))
        try:
            self._client.query(template)
        except (PanelQueryError, httpx.HTTPError) as exc:
            self._fail(f"Failed to request PCAP extraction: {exc}")
            return None

        logger.info("Download request submitted for %s, polling for status", job_id)
        self._thread = threading.Thread(
            target=self._run, args=(job_id, self._stop), name=f"pcap-poll-{job_id}", daemon=True
        )
        self._thread.start()
        return job_id

    def _run(self, job_id: str, stop: threading.Event) -> None:
        while not stop.wait(self._interval):
            if self.poll(job_id):
                break

    def poll(self, job_id: str) -> bool:
        """Issue one status query; returns ``True`` once the job is finished."""

        logger.info("Polling job status for %s", job_id)
        try:
            fields = self._client.query(QueryTemplate(self._datasource_uid or "", ACTION_STATUS, job_id))
        except (PanelQueryError, httpx.HTTPError) as exc:
            self._fail(f"Failed to poll status: {exc}", job_id=job_id)
            return True

        status = fields.get("status")
        if not status:
            self._fail(f"Invalid status response format - no status found in response: {fields}", job_id=job_id)
            return True
        if status == ExecutionStatus.RUNNING.value:
            logger.info("Job still running, continuing to poll")
            return False
        if status == ExecutionStatus.SUCCEEDED.value:
            self._complete(job_id, fields.get("download_url"))
            return True

        message = f"Job failed with status: {status}"
        if "error" in fields:
            message += f"\nError: {fields['error']}"
        if "cause" in fields:
            message += f"\nCause: {fields['cause']}"
        self._fail(message, job_id=job_id)
        return True

    def _complete(self, job_id: str, download_url: str | None) -> None:
        logger.info("Job completed successfully")
        if not self._is_current(job_id):
            return
        self._download_url = download_url
        if not download_url:
            logger.warning("Execution succeeded without a download URL")
            self._finish(DownloadState.DOWNLOADED, job_id=job_id)
            return
        try:
            path = self._fetcher.fetch(download_url)
        except (httpx.HTTPError, OSError) as exc:
            self._fail(f"Failed to download PCAP: {exc}", job_id=job_id)
            return
        if self._is_current(job_id):
            self._path = path
        self._finish(DownloadState.DOWNLOADED, job_id=job_id)

    def wait(self, timeout: float | None = None) -> DownloadState:
        self._done.wait(timeout)
        return self._state

    def cancel(self) -> None:
        """Stop polling and return an unfinished job to ``idle``.

        Safe to call repeatedly and from the polling thread. A poll still in
        flight is waited for at most ``JOIN_TIMEOUT_SEC``; its outcome is
        discarded.
        """

        self._stop.set()
        with self._lock:
            self._cancelled = True
            if self._state is DownloadState.PROCESSING:
                self._state = DownloadState.IDLE
        self._done.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=JOIN_TIMEOUT_SEC)
            if thread.is_alive():
                logger.warning("Polling thread %s still busy after cancel", thread.name)
        self._thread = None

    def reset(self) -> None:
        self.cancel()
        with self._lock:
            self._state = DownloadState.IDLE
            self._error = None
        self._done.clear()

    def __enter__(self) -> "PcapDownload":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()
