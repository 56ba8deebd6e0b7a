#!/usr/bin/env python3
import sys
import json
import asyncio
import argparse
from typing import Any, Dict, List, Optional

# Load environment variables from .env file
from dotenv import load_dotenv

from curator.pipeline.config import ConfigError, load_config, load_feed_configs
from curator.pipeline.curation_pipeline import (
    CurationPipeline,
    CurationResult,
    GenerationOutcome,
    PipelineError,
)
from curator.utils.logging_config import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Article curation and topic generation pipeline")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--curate-only', action='store_true', help='Fetch, score and select articles without calling the backend')
    mode.add_argument('--once', action='store_true', help='Run the full pipeline once (default)')
    parser.add_argument('--caller', default='cli', help='Caller identity used for rate limiting (default: cli)')
    parser.add_argument('--feeds', help='Path to a feeds YAML file')
    parser.add_argument('--config', help='Path to a pipeline YAML config file')
    parser.add_argument('--json', action='store_true', help='Print results as JSON')
    parser.add_argument('--log-level', help='Override the configured log level')
    return parser


def print_curation(curation: CurationResult) -> None:
    feeds = curation.feed_report.summary()
    print(f"✅ Curated {len(curation.selected)} articles "
          f"(preset '{curation.preset}', diversity {curation.diversity_score}/100)")
    print(f"   Feeds: {feeds['feeds_successful']}/{feeds['feeds_attempted']} ok, "
          f"{feeds['feeds_timed_out']} timed out, {feeds['feeds_skipped']} skipped")
    for i, scored in enumerate(curation.selected, 1):
        print(f"   {i:>2}. [{scored.composite_score:5.1f}] {scored.article.title[:80]} ({scored.domain})")


def print_outcome(outcome: GenerationOutcome) -> None:
    report = outcome.report
    print(f"✅ {len(outcome.topics)} topics passed validation "
          f"({len(report.invalid_topics)} rejected, {len(report.substitutions)} URLs corrected, "
          f"repair stage: {outcome.repair.stage})")
    for topic in outcome.topics:
        flag = " ⚠️" if topic.low_confidence else ""
        print(f"   • {topic.headline}{flag}")
        print(f"     {topic.source_url}")
    for invalid in report.invalid_topics:
        print(f"❌ {invalid.topic.headline or '(no headline)'}: {'; '.join(invalid.issues)}")


async def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    setup_logging(
        log_level=args.log_level or config.log_level,
        log_dir=config.log_dir,
        enable_file_logging=bool(config.log_dir),
    )
    feeds = load_feed_configs(args.feeds or config.feeds_path)
    pipeline = CurationPipeline.from_config(config, feeds, with_backend=not args.curate_only)

    output: Dict[str, Any] = {}
    if args.curate_only:
        curation = await pipeline.curate()
        output["curation"] = curation.to_dict()
        if not args.json:
            print_curation(curation)
    else:
        curation, outcome = await pipeline.run(args.caller)
        output["curation"] = curation.to_dict()
        output["generation"] = outcome.to_dict()
        if not args.json:
            print_curation(curation)
            print_outcome(outcome)

    if args.json:
        print(json.dumps(output, indent=2, ensure_ascii=False, default=str))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    load_dotenv()
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run(args))
    except (PipelineError, ConfigError) as e:
        print(f"❌ Pipeline failed: {e}")
        return 1
    except ValueError as e:
        # Raised for missing credentials, e.g. no GEMINI_API_KEY
        print(f"❌ {e}")
        return 1
    except KeyboardInterrupt:
        print("\n⚠️ Shutting down gracefully...")
        return 130


if __name__ == "__main__":
    sys.exit(main())
