"""Assetpack CLI entrypoints."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from collections import Counter
from pathlib import Path
from typing import Any

from .cli_progress import SectionProgressRenderer, elapsed_line, progress_once
from .config import EngineConfig
from .errors import AssetpackError
from .layout import reference_layout, select_sections
from .prompts.expander import GeminiExpander
from .providers import default_registry
from .providers.base import HealthReport, ImageBackend
from .runs.events import EventWriter, read_events
from .runs.export import export_html, write_final_canvas
from .runs.summary import RunSummary, write_summary
from .session.board import AssetBoard
from .utils import epoch_ms, load_dotenv, now_utc_iso


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="assetpack")
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Generate every section of the asset pack")
    run.add_argument("--prompt", required=True, help="Global prompt shared by all sections")
    run.add_argument("--style", default="")
    run.add_argument("--lora", default="none")
    run.add_argument("--count", type=int, default=1, help="Variants per section (1-10)")
    run.add_argument("--cfg-scale", dest="cfg_scale", type=float)
    run.add_argument("--expand", action="store_true", help="Expand the prompt per section with Gemini first")
    run.add_argument("--only", nargs="+", metavar="TITLE", help="Limit the run to these section titles")
    run.add_argument("--out", help="Run output directory")
    _add_backend_args(run)

    expand = sub.add_parser("expand", help="Expand a theme into per-section prompts")
    expand.add_argument("--theme", required=True)
    expand.add_argument("--out", help="Write the bundle to this JSON file")

    loras = sub.add_parser("loras", help="List available LoRA adapters")
    _add_backend_args(loras)

    check = sub.add_parser("check", help="Check backend connectivity")
    _add_backend_args(check)

    export = sub.add_parser("export", help="Export a final canvas to HTML")
    export.add_argument("--canvas", required=True, help="Canvas directory")
    export.add_argument("--out", required=True, help="Output HTML path")
    return parser


def _add_backend_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Use the offline placeholder backend")
    parser.add_argument("--base-url", dest="base_url", help="A1111 web UI address")
    auth = parser.add_mutually_exclusive_group()
    auth.add_argument("--basic-auth", dest="basic_auth", metavar="USER:PASS")
    auth.add_argument("--bearer-token", dest="bearer_token", metavar="TOKEN")


def _resolve_backend(args: argparse.Namespace, config: EngineConfig) -> ImageBackend:
    registry = default_registry(
        config,
        basic_auth=getattr(args, "basic_auth", None),
        bearer_token=getattr(args, "bearer_token", None),
    )
    name = "dryrun" if getattr(args, "dry_run", False) else "a1111"
    backend = registry.get(name)
    if backend is None:
        raise AssetpackError(f"Unknown backend: {name}")
    return backend


def _config_from_args(args: argparse.Namespace) -> EngineConfig:
    return EngineConfig.from_env().with_overrides(
        base_url=getattr(args, "base_url", None),
        cfg_scale=getattr(args, "cfg_scale", None),
    )


async def _run_board(board: AssetBoard, args: argparse.Namespace, config: EngineConfig) -> dict[str, BaseException | None]:
    if args.expand:
        expander = GeminiExpander(config.gemini_api_key, config.expand_model)
        progress_once("Expanding prompts")
        bundle = await board.expand_prompts(expander)
        print(f"Expanded {len(bundle.symbol_icons)} symbol and {len(bundle.wild_icons)} wild prompts.")
    renderer = SectionProgressRenderer()
    for controller in board.sections:
        controller.subscribe(renderer)
    return await board.generate_all(args.count)


def _handle_run(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    sections = select_sections(reference_layout(), args.only)
    if not sections:
        print("No sections matched --only.")
        return 1
    run_id = f"run-{epoch_ms()}"
    run_dir = Path(args.out) if args.out else Path("runs") / run_id
    events_path = run_dir / "events.jsonl"
    events = EventWriter(events_path, run_id)
    backend = _resolve_backend(args, config)
    board = AssetBoard.from_layout(backend, sections, config=config, events=events)
    board.set_global_prompt(args.prompt)
    board.configure(style=args.style, lora=args.lora, variant_count=args.count, cfg_scale=args.cfg_scale)

    started_at = now_utc_iso()
    started = time.monotonic()
    events.emit("run_started", backend=backend.name, sections=len(sections), settings=board.settings)
    try:
        outcome = asyncio.run(_run_board(board, args, config))
    except AssetpackError as exc:
        events.emit("run_finished", ok=False, error=str(exc))
        print(f"Run failed: {exc}")
        return 1

    failures: dict[str, str] = {}
    for controller in board.sections:
        error = outcome.get(controller.title)
        if error is not None:
            failures[controller.title] = str(error)
        elif controller.gallery:
            controller.set_as_final(0)

    canvas_dir = run_dir / "canvas"
    write_final_canvas(board.finals, canvas_dir)
    html_path = export_html(canvas_dir, canvas_dir / "index.html")

    summary = RunSummary(
        run_id=run_id,
        started_at=started_at,
        finished_at=now_utc_iso(),
        total_sections=len(board.sections),
        total_variants=sum(len(controller.gallery) for controller in board.sections),
        finals=[title for title, _ in board.finals.items()],
        failures=failures,
    )
    events.emit("run_finished", ok=not failures, finals=len(board.finals), failures=len(failures))
    counts = Counter(str(event.get("type")) for event in read_events(events_path))
    write_summary(run_dir / "summary.json", summary, {"backend": backend.name, "events": dict(counts)})

    print(elapsed_line("Run finished in", time.monotonic() - started))
    print(f"Finals: {len(board.finals)}/{len(board.sections)} | Canvas: {html_path}")
    for title, message in failures.items():
        print(f"Failed: {title}: {message}")
    return 1 if failures else 0


def _handle_expand(args: argparse.Namespace) -> int:
    config = EngineConfig.from_env()
    expander = GeminiExpander(config.gemini_api_key, config.expand_model)
    if not expander.configured:
        print("Prompt expansion requires GEMINI_API_KEY (or GOOGLE_API_KEY).")
        return 1
    progress_once("Expanding prompts")
    try:
        bundle = expander.expand(args.theme)
    except AssetpackError as exc:
        print(f"Expansion failed: {exc}")
        return 1
    payload = json.dumps(bundle.to_dict(), indent=2)
    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(payload, encoding="utf-8")
        print(f"Wrote prompts to {out_path}")
    else:
        print(payload)
    return 0


def _handle_loras(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    backend = _resolve_backend(args, config)
    try:
        loras = backend.list_loras()
    except AssetpackError as exc:
        print(f"Could not list LoRAs: {exc}")
        return 1
    if not loras:
        print("No LoRAs found.")
        return 0
    for lora in loras:
        label = f"{lora.name} ({lora.alias})" if lora.alias and lora.alias != lora.name else lora.name
        print(label)
    return 0


def _handle_check(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    backend = _resolve_backend(args, config)
    report = backend.health()
    report.text_provider_configured = bool(config.gemini_api_key)
    print(json.dumps(_report_payload(report), indent=2))
    return 0 if report.ok else 1


def _report_payload(report: HealthReport) -> dict[str, Any]:
    return {
        "ok": report.ok,
        "status": report.status,
        "provider": report.provider,
        "base_url": report.base_url,
        "models": report.models,
        "samplers": report.samplers,
        "max_images_per_request": report.max_images_per_request,
        "text_provider_configured": report.text_provider_configured,
        "error": report.error,
    }


def _handle_export(args: argparse.Namespace) -> int:
    canvas_dir = Path(args.canvas)
    out_path = Path(args.out)
    export_html(canvas_dir, out_path)
    print(f"Exported to {out_path}")
    return 0


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)
    handlers = {
        "run": _handle_run,
        "expand": _handle_expand,
        "loras": _handle_loras,
        "check": _handle_check,
        "export": _handle_export,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help(sys.stderr)
        raise SystemExit(1)
    raise SystemExit(handler(args))


if __name__ == "__main__":
    main()
