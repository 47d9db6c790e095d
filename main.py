#!/usr/bin/env python3
"""
Meeting Transcriber - chunked speech-to-text for long recordings
Main entry point
"""

import argparse
import asyncio
import json
import mimetypes
import sys
from pathlib import Path

# Ensure the package can be imported when run directly
sys.path.insert(0, str(Path(__file__).parent))

from meeting_transcriber.audio.engine import default_engine
from meeting_transcriber.audio.tiers import TierPolicy
from meeting_transcriber.config import (
    SEGMENT_CONCURRENCY, SEGMENT_STORE_TOKEN, SEGMENT_STORE_URL, SUMMARIZATION_MODEL,
    TRANSCRIPTION_LANGUAGE, TRANSCRIPTION_MODEL, load_pipeline_overrides
)
from meeting_transcriber.models import PipelineStage
from meeting_transcriber.pipeline import TranscriptionPipeline
from meeting_transcriber.processing.summarizer import Summarizer
from meeting_transcriber.progress import EstimateConstants, estimate_transcription_cost
from meeting_transcriber.transcripts.backend import WhisperBackend
from meeting_transcriber.transcripts.store import create_store
from meeting_transcriber.utils.clients import create_openai_client, create_whisper_rate_limiter
from meeting_transcriber.utils.logging import setup_logging, get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Transcribe a meeting recording of any length')
    parser.add_argument('file', help='Audio or video file to transcribe')
    parser.add_argument('--model', default=TRANSCRIPTION_MODEL, help='Transcription model')
    parser.add_argument('--language', default=TRANSCRIPTION_LANGUAGE,
                        help='Spoken language (ISO-639-1), empty for auto-detect')
    parser.add_argument('--concurrency', type=int, default=SEGMENT_CONCURRENCY,
                        help='Segments transcribed in parallel')
    parser.add_argument('--store', default=SEGMENT_STORE_URL,
                        help='Segment store URL (http(s) base URL or local directory)')
    parser.add_argument('--mime-type', help='MIME type of the upload (guessed from the name by default)')
    parser.add_argument('--summarize', action='store_true', help='Summarize the transcript')
    parser.add_argument('--summary-model', default=SUMMARIZATION_MODEL, help='Chat model for the summary')
    parser.add_argument('--output', '-o', help='Write the transcript to this file')
    parser.add_argument('--config', help='pipeline.yaml with tier and estimate overrides')
    parser.add_argument('--log-file', default='meeting_transcriber.log', help='Log file ("" to disable)')
    return parser


async def run(args) -> int:
    path = Path(args.file)
    if not path.is_file():
        logger.error(f"❌ File not found: {path}")
        return 2

    overrides = load_pipeline_overrides(args.config)
    client = create_openai_client()
    backend = WhisperBackend(client, language=args.language or None,
                             rate_limiter=create_whisper_rate_limiter())
    summarizer = Summarizer(client, model=args.summary_model) if args.summarize else None
    mime_type = args.mime_type or mimetypes.guess_type(path.name)[0]

    try:
        async with create_store(args.store, SEGMENT_STORE_TOKEN) as store:
            pipeline = TranscriptionPipeline(
                engine=default_engine(),
                store=store,
                backend=backend,
                summarizer=summarizer,
                policy=TierPolicy.from_config(overrides),
                constants=EstimateConstants.from_config(overrides),
                model=args.model,
                concurrency=args.concurrency,
            )
            job = await pipeline.process_upload(path.read_bytes(), path.name, mime_type)
            status = pipeline.status(job.id, consume=True)
    finally:
        await client.close()

    print(json.dumps(status, indent=2))

    if job.stage != PipelineStage.COMPLETED:
        salvaged = job.error.salvaged_transcripts if job.error else {}
        if salvaged:
            logger.warning(f"{len(salvaged)} segment transcript(s) finished before the failure: {sorted(salvaged)}")
        return 1

    duration = job.segments[-1].end_seconds if job.segments else 0
    logger.info(f"💰 Estimated transcription cost: ${estimate_transcription_cost(duration, args.model):.3f}")

    if args.output:
        Path(args.output).write_text(job.transcript, encoding='utf-8')
        logger.info(f"💾 Transcript written to {args.output}")
    else:
        print(job.transcript)

    if job.summary:
        print("\n" + job.summary)
    return 0


def main():
    args = build_parser().parse_args()
    setup_logging(args.log_file or None)

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        logger.info("\n⚠️  Interrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    main()
