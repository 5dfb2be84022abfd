from __future__ import annotations

import argparse
import sys

from tubefeed.app.dependencies import get_credential_pool, get_pipeline, get_settings
from tubefeed.app.logging_config import configure_application_logging
from tubefeed.app.services.credential_pool import AllCredentialsExhaustedError
from tubefeed.app.services.video_writer import VideoWriterError
from tubefeed.app.services.youtube_fetcher import YouTubeFetchError


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run a single YouTube fetch-and-store pass and print its summary.",
    )
    parser.add_argument(
        "--query",
        default=None,
        help="Search query (defaults to TUBEFEED_SEARCH_QUERY).",
    )
    parser.add_argument(
        "--published-after",
        default=None,
        help="RFC 3339 timestamp; defaults to the configured search window.",
    )
    parser.add_argument(
        "--show-quota",
        action="store_true",
        help="Print per-key quota usage after the run.",
    )
    return parser.parse_args()


def _print_quota() -> None:
    pool = get_credential_pool()
    print(f"quota_epoch\t{pool.quota_epoch}")
    print("key\tquota_used\tquota_limit\texhausted\tactive")
    for usage in pool.snapshot():
        print(
            "\t".join(
                [
                    usage.masked_value,
                    str(usage.quota_used),
                    str(usage.quota_limit),
                    "yes" if usage.exhausted else "no",
                    "*" if usage.active else "-",
                ]
            )
        )


def main() -> int:
    args = _parse_args()
    settings = get_settings()
    configure_application_logging(settings)
    query = args.query.strip() if isinstance(args.query, str) and args.query.strip() else None

    try:
        summary = get_pipeline().run(
            query or settings.search_query,
            timeout_seconds=settings.fetch_run_timeout_seconds,
            published_after=args.published_after,
        )
    except AllCredentialsExhaustedError as exc:
        print(f"Fetch aborted: {exc}", file=sys.stderr)
        return 2
    except (YouTubeFetchError, VideoWriterError) as exc:
        print(f"Fetch failed: {exc}", file=sys.stderr)
        return 1
    finally:
        if args.show_quota:
            _print_quota()

    print(f"run_id\t{summary.run_id}")
    print(f"query\t{summary.query}")
    print(f"started_at\t{summary.started_at}")
    print(f"fetched\t{summary.items_fetched}")
    print(f"saved\t{summary.items_saved}")
    print(f"failed\t{summary.items_failed}")
    print(f"duration_ms\t{summary.duration_ms}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
