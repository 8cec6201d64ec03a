from pathlib import Path
import argparse
import logging
import sys
from threading import Event, Thread

from dotenv import load_dotenv
from tqdm import tqdm

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

load_dotenv(ROOT_DIR / ".env")

from backend import config
from pipeline.file_processor import FileProcessor, SourceFile, TranscriptionResult
from pipeline.pipeline_config import PipelineConfig
from services.openai_provider import OpenAITranscriptionProvider
from services.relay_protocol import HttpRelayTransport, InProcessRelayTransport


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Transcribe an audio/video file or an Instagram reel.")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("input", nargs="?", help="Path to an audio or video file")
    target.add_argument("--reel", help="Instagram reel URL")
    parser.add_argument("--language", default=None, help="Language hint, e.g. de or en")
    parser.add_argument("--relay-url", default=config.RELAY_URL, help="Base URL of the transcription relay")
    parser.add_argument(
        "--direct",
        action="store_true",
        help="Call OpenAI directly (needs OPENAI_API_KEY) instead of going through the relay",
    )
    parser.add_argument("--output", "-o", default=None, help="Write the transcript to this file")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args(argv)


def build_processor(args: argparse.Namespace, settings: PipelineConfig) -> FileProcessor:
    if args.direct:
        transport = InProcessRelayTransport(OpenAITranscriptionProvider.from_env())
    else:
        transport = HttpRelayTransport(args.relay_url, request_timeout=settings.request_timeout_seconds)
    return FileProcessor.build(transport=transport, config=settings)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    settings = PipelineConfig.from_env()
    try:
        processor = build_processor(args, settings)
    except ValueError as exc:
        print(f"❌ {exc}")
        return 2

    source = None
    if args.input:
        try:
            source = SourceFile.from_path(args.input)
        except FileNotFoundError as exc:
            print(f"❌ {exc}")
            return 2

    cancel_event = Event()
    outcome: dict[str, TranscriptionResult] = {}
    bar = tqdm(total=0, unit="part", desc="Transcribing")

    def on_progress(done: int, total: int) -> None:
        bar.total = total
        bar.n = done
        bar.refresh()

    def run() -> None:
        if args.reel:
            outcome["result"] = processor.process_reel(
                args.reel, language=args.language, cancel_event=cancel_event, on_progress=on_progress
            )
        else:
            outcome["result"] = processor.process_file(
                source, language=args.language, cancel_event=cancel_event, on_progress=on_progress
            )

    worker = Thread(target=run, daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(timeout=0.25)
    except KeyboardInterrupt:
        print("\nStopping after the current part...")
        cancel_event.set()
        worker.join()
    finally:
        bar.close()

    result = outcome.get("result")
    if result is None:
        print("❌ Transcription did not complete.")
        return 1
    if not result.ok:
        print(f"❌ {result.message}")
        return 1

    if args.output:
        Path(args.output).write_text(result.text + "\n", encoding="utf-8")
        print(f"✅ Transcript written to {args.output}")
    else:
        print(result.text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
