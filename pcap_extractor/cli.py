from __future__ import annotations

import argparse
import logging
import os
import sys

import httpx

from pcap_extractor.domain import ACTION_STATUS
from pcap_extractor.panel import (
    ArtifactFetcher,
    DatasourceQueryClient,
    DownloadState,
    ExtractDataError,
    PanelQueryError,
    PcapDownload,
    QueryTemplate,
    load_packet_table,
)
from pcap_extractor.panel.download import POLL_INTERVAL_SEC


def _configure_logging() -> None:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _add_grafana_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--grafana-url", default=os.getenv("GRAFANA_URL", "http://localhost:3000"), help="Grafana base URL")
    parser.add_argument("--token", default=os.getenv("GRAFANA_TOKEN"), help="Grafana service account token")
    parser.add_argument(
        "--datasource-uid",
        default=os.getenv("PCAP_EXTRACTOR_DATASOURCE_UID"),
        help="uid of the PCAP extractor datasource",
    )


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("pcap_extractor.app:create_app", factory=True, host=args.host, port=args.port)
    return 0


def _status(args: argparse.Namespace) -> int:
    with DatasourceQueryClient(args.grafana_url, api_token=args.token) as client:
        try:
            fields = client.query(QueryTemplate(args.datasource_uid or "", ACTION_STATUS, args.job_id))
        except (PanelQueryError, httpx.HTTPError) as exc:
            print(f"status query failed: {exc}", file=sys.stderr)
            return 1
    for name, value in fields.items():
        print(f"{name}: {value}")
    return 0


def _download(args: argparse.Namespace) -> int:
    try:
        frame = load_packet_table(args.packets)
    except (ExtractDataError, OSError, ValueError) as exc:
        print(f"cannot read packet table: {exc}", file=sys.stderr)
        return 1

    fetcher = ArtifactFetcher(args.output_dir)
    with DatasourceQueryClient(args.grafana_url, api_token=args.token) as client:
        with PcapDownload(client, args.datasource_uid, fetcher, interval=args.interval) as download:
            job_id = download.start_from_frame(frame)
            if job_id:
                print(f"extraction {job_id} submitted, polling every {args.interval:g}s")
            state = download.wait()
    fetcher.close()

    if state is DownloadState.DOWNLOADED:
        print(f"Download finished: {download.path or download.download_url or '(no file)'}")
        return 0
    print(f"Download failed:\n{download.error}", file=sys.stderr)
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pcap-extractor", description="PCAP extraction via AWS Step Functions")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="run the datasource HTTP service")
    serve.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    serve.set_defaults(handler=_serve)

    status = commands.add_parser("status", help="show the status of an extraction job")
    _add_grafana_arguments(status)
    status.add_argument("--job-id", required=True, help="job id returned when the extraction was requested")
    status.set_defaults(handler=_status)

    download = commands.add_parser("download", help="extract packets and download the resulting capture")
    _add_grafana_arguments(download)
    download.add_argument("--packets", required=True, help="table with source_file and source_packet_number columns")
    download.add_argument("--output-dir", default=".", help="directory for the downloaded .pcapng")
    download.add_argument("--interval", type=float, default=POLL_INTERVAL_SEC, help="seconds between status polls")
    download.set_defaults(handler=_download)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging()
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
