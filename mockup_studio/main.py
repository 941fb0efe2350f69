"""
Mockup Studio - command line front end

Usage:
  python -m mockup_studio.main keys [--check]
  python -m mockup_studio.main credits [--add 5]
  python -m mockup_studio.main asset "red canvas tote bag" --type product
  python -m mockup_studio.main remove-bg logo.jpg
  python -m mockup_studio.main refine mockup.png "warmer lighting"
  python -m mockup_studio.main analyze photo.png
  python -m mockup_studio.main mockup --product shirt.png --layout layout.json
  python -m mockup_studio.main capture --frame cam.jpg --viewport 390x844 --layout layout.json
  python -m mockup_studio.main command --layout layout.json "move the logo to the left chest"

layout.json:
  {"layers": [{"asset": "logo.png", "name": "Acme logo", "x": 65, "y": 30,
               "scale": 0.8, "rotation": 0, "blend_mode": "multiply"}]}
Asset paths are relative to the layout file. Layers are listed bottom to top.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .assets import AssetStore, load_image_source
from .config import StudioSettings, load_settings
from .credits import CreditLedger
from .errors import InsufficientCredits, StudioError, failure_category
from .gateway import AIGateway
from .invoker import ResilientInvoker
from .key_pool import KeyPool
from .models import Asset, ImageBlob, PlacedLayer
from .rasterizer import CompositeRasterizer
from .session import StudioSession
from .storage import JsonFileStore, KeyValueStore

console = Console()

OUTPUTS_ROOT = Path("outputs")

CATEGORY_MESSAGES = {
    "blocked": "Blocked: Safety filters triggered",
    "busy":    "System Busy: Try again later",
    "failed":  "Generation Failed",
}


# ── Wiring ────────────────────────────────────────────────────────────────────

def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )
    # google-genai / httpx are chatty at INFO
    for name in ("httpx", "google_genai"):
        logging.getLogger(name).setLevel(logging.WARNING)


class Studio:
    """Everything a command needs, built from settings and one state file."""

    def __init__(self, settings: StudioSettings, store: KeyValueStore) -> None:
        self.settings = settings
        self.store = store
        self.pool = KeyPool(settings.api_keys, store=store)
        self.invoker = ResilientInvoker(self.pool)
        self.ledger = CreditLedger(store, initial=settings.initial_credits)
        self.gateway = AIGateway(self.invoker, settings, ledger=self.ledger)
        self.rasterizer = CompositeRasterizer(
            max_dimension=settings.capture_max_dim, jpeg_quality=settings.jpeg_quality
        )


def parse_viewport(raw: str) -> Tuple[int, int]:
    try:
        w, h = raw.lower().split("x", 1)
        size = int(w), int(h)
    except ValueError:
        raise argparse.ArgumentTypeError(f"viewport must look like 390x844, got {raw!r}") from None
    if size[0] <= 0 or size[1] <= 0:
        raise argparse.ArgumentTypeError("viewport dimensions must be positive")
    return size


def load_layout(path: Path) -> Tuple[List[Asset], List[PlacedLayer], Dict[str, str]]:
    """
    Read a layout file into logo assets and placed layers (bottom to top).
    The third value maps each asset id back to its path as written in the file.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    entries = data.get("layers", []) if isinstance(data, dict) else data
    assets: Dict[Path, Asset] = {}
    sources: Dict[str, str] = {}
    layers: List[PlacedLayer] = []
    for entry in entries:
        asset_path = (path.parent / entry["asset"]).resolve()
        if asset_path not in assets:
            asset = Asset.from_file(asset_path, "logo", name=entry.get("name", ""))
            assets[asset_path] = asset
            sources[asset.id] = entry["asset"]
        layers.append(PlacedLayer.from_dict({**entry, "asset_id": assets[asset_path].id}))
    return list(assets.values()), layers, sources


def save_layout(path: Path, layers: List[PlacedLayer], assets: List[Asset], sources: Dict[str, str]) -> None:
    names = {a.id: a.name for a in assets}
    out = []
    for layer in layers:
        entry = {"asset": sources[layer.asset_id], "name": names.get(layer.asset_id, "")}
        entry.update({k: v for k, v in layer.to_dict().items() if k not in ("uid", "asset_id")})
        out.append(entry)
    path.write_text(json.dumps({"layers": out}, indent=2), encoding="utf-8")


def output_path(explicit: Optional[str], stem: str, blob: ImageBlob) -> Path:
    if explicit:
        return Path(explicit)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return OUTPUTS_ROOT / f"{stamp}_{stem}{blob.extension}"


def write_result(blob: ImageBlob, explicit: Optional[str], stem: str) -> None:
    path = blob.save(output_path(explicit, stem, blob))
    console.print(f"  [green]✓[/green] Saved → {path}")


# ── Commands ──────────────────────────────────────────────────────────────────

def cmd_keys(studio: Studio, args: argparse.Namespace) -> int:
    table = Table(title=f"API keys ({studio.pool.size})")
    table.add_column("Key")
    table.add_column("Circuit")
    table.add_column("Failures", justify="right")
    table.add_column("Requests", justify="right")
    table.add_column("Cooling down")
    colors = {"CLOSED": "green", "HALF_OPEN": "yellow", "OPEN": "red"}
    for s in studio.pool.status():
        table.add_row(
            f"...{s.id}",
            f"[{colors[s.state]}]{s.state}[/{colors[s.state]}]",
            str(s.failures),
            str(s.total),
            "yes" if s.cooling_down else "no",
        )
    console.print(table)
    if args.check:
        ok = studio.gateway.validate_connection()
        console.print("  [green]✓ Connection OK[/green]" if ok else "  [red]✗ Connection failed[/red]")
        return 0 if ok else 1
    return 0


def cmd_credits(studio: Studio, args: argparse.Namespace) -> int:
    if args.add:
        studio.ledger.add(args.add, "Manual top-up", kind="purchase")
    console.print(f"  Balance: [bold]{studio.ledger.balance}[/bold] credit(s)")
    history = studio.ledger.transactions()[: args.history]
    if history:
        table = Table(title="Recent transactions")
        table.add_column("When")
        table.add_column("Type")
        table.add_column("Amount", justify="right")
        table.add_column("Description")
        for t in history:
            when = datetime.fromtimestamp(t["timestamp"]).strftime("%Y-%m-%d %H:%M")
            table.add_row(when, t["type"], f"{t['amount']:+d}", t["description"])
        console.print(table)
    return 0


def cmd_asset(studio: Studio, args: argparse.Namespace) -> int:
    blob = studio.gateway.generate_asset(args.description, args.type)
    write_result(blob, args.out, args.type)
    return 0


def cmd_remove_bg(studio: Studio, args: argparse.Namespace) -> int:
    blob = studio.gateway.remove_background(load_image_source(Path(args.image)))
    write_result(blob, args.out, "nobg")
    return 0


def cmd_refine(studio: Studio, args: argparse.Namespace) -> int:
    blob = studio.gateway.refine_image(load_image_source(Path(args.image)), args.instruction)
    write_result(blob, args.out, "refined")
    return 0


def cmd_analyze(studio: Studio, args: argparse.Namespace) -> int:
    result = studio.gateway.analyze_asset(load_image_source(Path(args.image)))
    console.print(Panel(f"[bold]{result.name}[/bold]\ntype: {result.type}", title="Analysis"))
    return 0


def _session_from_layout(
    studio: Studio, layout: Path, product: Optional[Path] = None
) -> Tuple[StudioSession, Dict[str, str]]:
    library = AssetStore()
    logos, layers, sources = load_layout(layout)
    for asset in logos:
        library.add(asset)
    if product is not None:
        library.add(Asset.from_file(product, "product"))
    session = StudioSession(library, studio.gateway, rasterizer=studio.rasterizer)
    session.load_layout([l.to_dict() for l in layers])
    return session, sources


def cmd_mockup(studio: Studio, args: argparse.Namespace) -> int:
    session, _ = _session_from_layout(studio, Path(args.layout), Path(args.product))
    try:
        if args.local_only:
            blob = session.render_preview(args.size)
        else:
            blob = session.generate_mockup(args.instruction)
    finally:
        session.close()
    write_result(blob, args.out, "mockup")
    return 0


def cmd_capture(studio: Studio, args: argparse.Namespace) -> int:
    session, _ = _session_from_layout(studio, Path(args.layout))
    frame = Path(args.frame)
    try:
        if args.local_only:
            blob = session.rasterize_capture(frame, args.viewport)
        else:
            blob = session.capture_composite(frame, args.viewport, args.task)
    finally:
        session.close()
    write_result(blob, args.out, "capture")
    return 0


def cmd_command(studio: Studio, args: argparse.Namespace) -> int:
    layout = Path(args.layout)
    session, sources = _session_from_layout(studio, layout)
    try:
        result = session.apply_command(args.text)
    finally:
        session.close()
    console.print(f"  [bold]{result.action}[/bold] {result.message}")
    if result.action != "UNKNOWN":
        save_layout(layout, session.engine.layers, session.assets.list(), sources)
        console.print(f"  [dim]Updated → {layout}[/dim]")
    return 0


# ── CLI ───────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mockup-studio",
        description="Mockup Studio: product mockups with Gemini",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("keys", help="Show API key health")
    p.add_argument("--check", action="store_true", help="Also send a test request")
    p.set_defaults(func=cmd_keys, needs_keys=False)

    p = sub.add_parser("credits", help="Show or top up the credit balance")
    p.add_argument("--add", type=int, default=0, metavar="N")
    p.add_argument("--history", type=int, default=10, metavar="N", help="Transactions to list")
    p.set_defaults(func=cmd_credits, needs_keys=False)

    p = sub.add_parser("asset", help="Generate a logo or product image from text")
    p.add_argument("description")
    p.add_argument("--type", choices=["logo", "product"], default="logo")
    p.add_argument("--out")
    p.set_defaults(func=cmd_asset, needs_keys=True)

    p = sub.add_parser("remove-bg", help="Remove an image's background")
    p.add_argument("image")
    p.add_argument("--out")
    p.set_defaults(func=cmd_remove_bg, needs_keys=True)

    p = sub.add_parser("refine", help="Edit an image by instruction")
    p.add_argument("image")
    p.add_argument("instruction")
    p.add_argument("--out")
    p.set_defaults(func=cmd_refine, needs_keys=True)

    p = sub.add_parser("analyze", help="Name and classify an image")
    p.add_argument("image")
    p.set_defaults(func=cmd_analyze, needs_keys=True)

    p = sub.add_parser("mockup", help="Composite layers onto a product")
    p.add_argument("--product", required=True)
    p.add_argument("--layout", required=True)
    p.add_argument("--instruction", default="Create a realistic product mockup.")
    p.add_argument("--size", type=int, default=1024, help="Preview size with --local-only")
    p.add_argument("--local-only", action="store_true", help="Render locally, skip Gemini")
    p.add_argument("--out")
    p.set_defaults(func=cmd_mockup, needs_keys=True)

    p = sub.add_parser("capture", help="Composite layers onto a camera frame")
    p.add_argument("--frame", required=True)
    p.add_argument("--viewport", required=True, type=parse_viewport, help="WIDTHxHEIGHT of the on-screen view")
    p.add_argument("--layout", required=True)
    p.add_argument("--task", default="Make this look photorealistic. Fix lighting and shadows.")
    p.add_argument("--local-only", action="store_true", help="Write the raw composite, skip Gemini")
    p.add_argument("--out")
    p.set_defaults(func=cmd_capture, needs_keys=True)

    p = sub.add_parser("command", help="Edit a layout with a natural-language command")
    p.add_argument("--layout", required=True)
    p.add_argument("text")
    p.set_defaults(func=cmd_command, needs_keys=True)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    settings = load_settings()
    local_only = getattr(args, "local_only", False)
    if args.needs_keys and not local_only and not settings.api_keys:
        console.print("[bold red]Error:[/bold red] no Gemini API key configured.")
        console.print("Set GEMINI_API_KEYS (JSON list) or GEMINI_API_KEY in .env.")
        sys.exit(1)

    studio = Studio(settings, JsonFileStore(settings.state_file))
    try:
        code = args.func(studio, args)
    except InsufficientCredits as exc:
        console.print(f"[bold red]Insufficient Credits[/bold red] ({exc.balance} left)")
        sys.exit(1)
    except StudioError as exc:
        console.print(f"[bold red]{CATEGORY_MESSAGES[failure_category(exc)]}[/bold red]: {exc}")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
