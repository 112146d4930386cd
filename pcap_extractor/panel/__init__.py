"""Download panel: query client, extraction map and polling downloader."""

from .client import DatasourceQueryClient, PanelQueryError, QueryTemplate, parse_response
from .download import ArtifactFetcher, DownloadState, PcapDownload, new_job_id
from .extract import ExtractDataError, load_packet_table, transform_extract_data

__all__ = [
    "ArtifactFetcher",
    "DatasourceQueryClient",
    "DownloadState",
    "ExtractDataError",
    "PanelQueryError",
    "PcapDownload",
    "QueryTemplate",
    "load_packet_table",
    "new_job_id",
    "parse_response",
    "transform_extract_data",
]
