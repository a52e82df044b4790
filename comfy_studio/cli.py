"""comfy-studio CLI entrypoints."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

from .api.client import ApiError, EngineClient
from .api.models import GenerateRequest
from .cli_progress import ProgressTicker
from .config import PROMPT_MODES, PreferencesStore, StudioConfig, engine_view_url
from .errors import EngineError, StudioError, UserCancellation
from .images import save_preview, save_result
from .prompt.structured import (
    DEFAULT_NEGATIVE_PROMPT,
    Character,
    GeneralTags,
    build_final_prompt,
    character_from_mapping,
    decode,
    encode,
    general_tags_from_mapping,
)
from .runs.events import EventWriter
from .session.orchestrator import GenerationOrchestrator
from .session.state import Session
from .utils import load_dotenv, serialize

logger = logging.getLogger(__name__)

_PREF_KEYS = ("engine_url", "prompt_mode", "system_prompt", "caption")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="comfy-studio", description="Image generation session client")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    generate = sub.add_parser("generate", help="Submit a prompt and wait for the images")
    source = generate.add_mutually_exclusive_group(required=True)
    source.add_argument("--prompt", help="Plain text prompt")
    source.add_argument("--structured", help="JSON file with characters, general_tags and caption ('-' for stdin)")
    generate.add_argument("--mode", choices=PROMPT_MODES, help="Prompt mode (defaults to the saved preference)")
    generate.add_argument("--system-prompt", dest="system_prompt", help="Override the saved system prompt")
    generate.add_argument("--negative", default=DEFAULT_NEGATIVE_PROMPT)
    generate.add_argument("--width", type=int, default=1024)
    generate.add_argument("--height", type=int, default=1536)
    generate.add_argument("--steps", type=int, default=28)
    generate.add_argument("--cfg", type=float, default=4.5)
    generate.add_argument("--seed", type=int, default=-1)
    generate.add_argument("--sampler", default="res_multistep")
    generate.add_argument("--scheduler", default="linear_quadratic")
    generate.add_argument("--out", default="outputs", help="Directory for downloaded images")
    generate.add_argument("--events", help="Path to events.jsonl")
    generate.add_argument("--timeout", type=float, help="Seconds before the session fails")
    generate.add_argument("--no-ws", dest="no_ws", action="store_true", help="Track the job by polling only")
    generate.add_argument(
        "--no-download", dest="no_download", action="store_true", help="Print engine image URLs instead"
    )

    sub.add_parser("status", help="Backend and engine status")
    sub.add_parser("health", help="Backend health check")
    sub.add_parser("queue", help="Engine queue")
    sub.add_parser("interrupt", help="Interrupt the running job")
    sub.add_parser("clear", help="Clear pending jobs")

    test_engine = sub.add_parser("test-engine", help="Check an engine URL and save it on success")
    test_engine.add_argument("--url", help="Engine URL (defaults to the saved one)")

    encode_cmd = sub.add_parser("encode", help="JSON prompt fields to structured prompt text")
    encode_cmd.add_argument("--input", default="-", help="JSON file ('-' for stdin)")

    decode_cmd = sub.add_parser("decode", help="Structured prompt text to JSON prompt fields")
    decode_cmd.add_argument("--input", default="-", help="Text file ('-' for stdin)")

    prefs = sub.add_parser("prefs", help="Show or update saved preferences")
    prefs.add_argument("--set", dest="assignments", action="append", default=[], metavar="KEY=VALUE")

    return parser


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _read_input(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _print_json(payload: Any) -> None:
    print(json.dumps(serialize(payload), indent=2))


def _structured_fields(payload: Any) -> tuple[list[Character], GeneralTags | None, str]:
    if not isinstance(payload, dict):
        raise ValueError("Structured prompt must be a JSON object")
    characters = [character_from_mapping(item) for item in payload.get("characters") or [] if isinstance(item, dict)]
    tags_raw = payload.get("general_tags")
    tags = general_tags_from_mapping(tags_raw) if isinstance(tags_raw, dict) else None
    return characters, tags, str(payload.get("caption") or "").strip()


def _structured_text(payload: Any) -> str:
    return encode(*_structured_fields(payload))


def _build_prompt(args: argparse.Namespace, prefs: PreferencesStore) -> str:
    if args.structured:
        characters, tags, caption = _structured_fields(json.loads(_read_input(args.structured)))
        # An omitted caption reuses the last one; a given caption is remembered.
        caption = caption or prefs.caption
        if caption != prefs.caption:
            prefs.caption = caption
        user_prompt = encode(characters, tags, caption)
        mode = args.mode or "structured"
    else:
        user_prompt = args.prompt or ""
        mode = args.mode or prefs.prompt_mode
    if args.system_prompt is not None:
        prefs.system_prompt = args.system_prompt
    if mode != prefs.prompt_mode:
        prefs.prompt_mode = mode
    if user_prompt.strip():
        return build_final_prompt(prefs.system_prompt, user_prompt)
    return user_prompt


async def _run_generation(
    config: StudioConfig,
    request: GenerateRequest,
    *,
    out_dir: Path,
    events: EventWriter,
    engine_url: str,
    download: bool,
) -> int:
    client = EngineClient(config.api_base, timeout_s=config.request_timeout_s)
    orchestrator = GenerationOrchestrator.from_config(config, client=client, events=events)
    ticker = ProgressTicker("Submitting")
    last_preview: str | None = None

    def on_session(session: Session) -> None:
        nonlocal last_preview
        ticker.update(session)
        if session.preview and session.preview != last_preview:
            last_preview = session.preview
            try:
                save_preview(session.preview, out_dir / "preview.png")
            except ValueError as exc:
                logger.debug("Skipping preview frame: %s", exc)

    async with orchestrator:
        orchestrator.subscribe(on_session)
        ticker.start_ticking()
        try:
            handle = await orchestrator.submit(request)
        except StudioError as exc:
            ticker.stop(orchestrator.session)
            print(f"Submission failed: {exc}")
            return 1
        try:
            session = await handle.wait()
        except asyncio.CancelledError:
            await orchestrator.cancel()
            ticker.stop(orchestrator.session)
            raise
        ticker.stop(session)

        try:
            images = await handle.result()
        except UserCancellation as exc:
            print(str(exc))
            return 130
        except EngineError as exc:
            print(f"Generation failed: {exc}")
            return 1

        for image in images:
            if not download:
                print(engine_view_url(engine_url, image.filename, image.subfolder, image.type))
                continue
            try:
                data = await asyncio.to_thread(client.download_image, image.filename, image.subfolder, image.type)
                path = save_result(data, out_dir, image)
            except (ApiError, ValueError) as exc:
                print(f"Download failed for {image.filename}: {exc}")
                return 1
            events.emit("image_saved", job_id=handle.job_id, filename=image.filename, path=str(path))
            print(f"Saved {path}")
    return 0


def _handle_generate(args: argparse.Namespace, config: StudioConfig, prefs: PreferencesStore) -> int:
    try:
        prompt = _build_prompt(args, prefs)
    except (OSError, ValueError) as exc:
        print(f"Invalid prompt input: {exc}")
        return 2
    request = GenerateRequest(
        prompt=prompt,
        negative_prompt=args.negative,
        width=args.width,
        height=args.height,
        steps=args.steps,
        cfg=args.cfg,
        seed=args.seed,
        sampler_name=args.sampler,
        scheduler=args.scheduler,
    )
    if args.timeout is not None:
        config.generation_timeout_s = args.timeout
    if args.no_ws:
        config.ws_url = ""
    out_dir = Path(args.out)
    events_path = Path(args.events) if args.events else None
    events = EventWriter(events_path)
    try:
        return asyncio.run(
            _run_generation(
                config,
                request,
                out_dir=out_dir,
                events=events,
                engine_url=prefs.engine_url,
                download=not args.no_download,
            )
        )
    except KeyboardInterrupt:
        print("Generation cancelled")
        return 130


def _handle_api(args: argparse.Namespace, config: StudioConfig) -> int:
    client = EngineClient(config.api_base, timeout_s=config.request_timeout_s)
    try:
        if args.command == "status":
            _print_json(client.status())
        elif args.command == "health":
            _print_json(client.health())
        elif args.command == "queue":
            _print_json(client.queue())
        elif args.command == "interrupt":
            _print_json(client.interrupt())
        elif args.command == "clear":
            _print_json(client.clear())
    except ApiError as exc:
        print(f"Request failed ({exc.status}): {exc.message}")
        return 1
    return 0


def _handle_test_engine(args: argparse.Namespace, config: StudioConfig, prefs: PreferencesStore) -> int:
    url = args.url or prefs.engine_url
    client = EngineClient(config.api_base, timeout_s=config.request_timeout_s)
    try:
        ok = client.test_engine(url)
    except ApiError as exc:
        print(f"Engine check failed ({exc.status}): {exc.message}")
        return 1
    if not ok:
        print(f"Engine not reachable at {url}")
        return 1
    prefs.engine_url = url
    print(f"Engine reachable at {prefs.engine_url}")
    return 0


def _handle_encode(args: argparse.Namespace) -> int:
    try:
        text = _structured_text(json.loads(_read_input(args.input)))
    except (OSError, ValueError) as exc:
        print(f"Invalid input: {exc}")
        return 2
    print(text)
    return 0


def _handle_decode(args: argparse.Namespace) -> int:
    try:
        raw = _read_input(args.input)
    except OSError as exc:
        print(f"Invalid input: {exc}")
        return 2
    _print_json(asdict(decode(raw)))
    return 0


def _handle_prefs(args: argparse.Namespace, prefs: PreferencesStore) -> int:
    for assignment in args.assignments:
        key, sep, value = assignment.partition("=")
        key = key.strip()
        if not sep or key not in _PREF_KEYS:
            print(f"Unknown preference assignment: {assignment} (keys: {', '.join(_PREF_KEYS)})")
            return 2
        try:
            setattr(prefs, key, value)
        except ValueError as exc:
            print(str(exc))
            return 2
    _print_json(prefs.as_dict())
    return 0


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    if args.command is None:
        parser.print_help()
        raise SystemExit(1)
    config = StudioConfig.from_env()
    if args.command in ("encode", "decode"):
        handler = _handle_encode if args.command == "encode" else _handle_decode
        raise SystemExit(handler(args))
    prefs = PreferencesStore(config.preferences_path)
    if args.command == "generate":
        raise SystemExit(_handle_generate(args, config, prefs))
    if args.command == "test-engine":
        raise SystemExit(_handle_test_engine(args, config, prefs))
    if args.command == "prefs":
        raise SystemExit(_handle_prefs(args, prefs))
    raise SystemExit(_handle_api(args, config))


if __name__ == "__main__":
    main()
