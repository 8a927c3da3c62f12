"""Main entry point for the Cohort Digest pipeline."""

import asyncio
import argparse
import json
import logging
import structlog
from pathlib import Path
from urllib.parse import parse_qsl

from cohort_digest.config import settings
from cohort_digest.models.schemas import RawDigest
from cohort_digest.tools.ics_export import (
    ExportFilter,
    collect_export_events,
    digest_events,
    generate_ics,
)
from cohort_digest.workflow import get_default_services, run_pipeline
from cohort_digest.workflow.state import DigestPipelineState

logger = structlog.get_logger()


def _resolve_log_level(level_name: str) -> int:
    return getattr(logging, level_name.upper(), logging.INFO)


def load_digest(path: str | None) -> RawDigest | None:
    """Read a digest issue from a JSON file."""
    if not path:
        return None
    return RawDigest.model_validate_json(Path(path).read_text(encoding="utf-8"))


def build_output(state: DigestPipelineState) -> dict:
    """JSON-ready view of a finished pipeline run."""
    event_sets = state.get("event_sets")
    organized = state.get("organized_digest")
    analysis = state.get("weekly_analysis")

    return {
        "groups": {
            group.value: [event.model_dump(mode="json") for event in events]
            for group, events in (event_sets.groups.items() if event_sets else [])
        },
        "reference_pool_size": len(event_sets.reference) if event_sets else 0,
        "supplementary": {
            name: [event.model_dump(mode="json") for event in events]
            for name, events in (event_sets.supplementary.items() if event_sets else [])
        },
        "organized_digest": json.loads(organized.model_dump_json()) if organized else None,
        "weekly_analysis": json.loads(analysis.model_dump_json()) if analysis else None,
        "collection_errors": state.get("collection_errors", []),
        "metrics": state.get("metrics", {}),
    }


def build_ics_export(state: DigestPipelineState, query: str | None, tz) -> str:
    """ICS feed of the run's events, selected by a ``blue=1&gold=1`` style query."""
    filters = ExportFilter.from_params(dict(parse_qsl(query or "")))
    newsletter = []
    if filters.newsletter:
        newsletter = digest_events(state.get("organized_digest"), tz, state.get("today"))
    events = collect_export_events(state["event_sets"], filters, newsletter)
    return generate_ics(events, tz=tz, calendar_name=filters.calendar_name())


async def run_digest(
    digest_path: str | None,
    days_ahead: int | None,
    limit: int | None,
    output_path: str | None,
    ics_path: str | None = None,
    ics_filter: str | None = None,
) -> None:
    """Run a single pipeline cycle and write the result."""
    logger.info("Starting digest run", digest=digest_path, days_ahead=days_ahead, limit=limit)

    result = await run_pipeline(load_digest(digest_path), days_ahead=days_ahead, limit=limit)
    payload = json.dumps(build_output(result), indent=2, default=str)

    if output_path:
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_text(payload, encoding="utf-8")
    else:
        print(payload)

    if ics_path:
        ics = build_ics_export(result, ics_filter, get_default_services().tz)
        Path(ics_path).parent.mkdir(parents=True, exist_ok=True)
        # ICS lines already end in CRLF
        Path(ics_path).write_text(ics, encoding="utf-8", newline="")
        logger.info("Wrote ICS export", path=ics_path, filter=ics_filter)

    logger.info(
        "Digest run complete",
        metrics=result.get("metrics", {}),
        errors=result.get("errors", []),
        output_path=output_path,
    )


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Cohort calendar and digest aggregator")
    parser.add_argument("--digest", default=None, help="Path to a digest issue JSON file")
    parser.add_argument("--days-ahead", type=int, default=None, help="Display window in days")
    parser.add_argument("--limit", type=int, default=None, help="Maximum events per group")
    parser.add_argument("--output", default=None, help="Write the JSON result here instead of stdout")
    parser.add_argument("--ics", default=None, help="Also write an ICS feed of the merged events here")
    parser.add_argument(
        "--ics-filter",
        default=None,
        help="Feed selection as a query string, e.g. 'blue=1&teamsathaas=1' or 'all=1'",
    )
    args = parser.parse_args()

    log_level = _resolve_log_level(settings.log_level)
    logging.basicConfig(level=log_level)

    # Suppress verbose Google SDK and httpx logging
    logging.getLogger("google_genai.models").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logger.info("Cohort Digest starting", debug=settings.debug)
    asyncio.run(run_digest(
        args.digest, args.days_ahead, args.limit, args.output, args.ics, args.ics_filter,
    ))


if __name__ == "__main__":
    main()
