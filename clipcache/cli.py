"""clipcache command line.

Usage:
    clipcache classify clip.webm         # Report how a source would be loaded
    clipcache load clip.webm             # Load it, converting or extracting if needed
    clipcache load clip.mov --timeout 60
    clipcache cache list                 # Cached frame sequences
    clipcache cache purge                # Delete every cached frame sequence
    clipcache serve --port 8080          # HTTP + WebSocket server
"""

import argparse
import sys
import webbrowser
from typing import List, Optional

from clipcache.errors import ClipCacheError, SourceNotFound
from clipcache.log_manager import LogCapture
from clipcache.models.domain import DirectStream
from clipcache.services.config_service import ConfigService
from clipcache.services.pipeline_service import LoadProgress, build_pipeline
from clipcache.utils import get_dir_size_bytes


def cmd_classify(args, config: ConfigService) -> int:
    pipeline = build_pipeline(config)
    try:
        classification = pipeline.classifier.classify(args.path)
    except SourceNotFound as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    print(f"Source:    {classification.source.path}")
    print(f"Kind:      {classification.kind.value}")
    print(f"Alpha:     {'yes' if classification.has_alpha else 'no'}")
    print(f"Codec:     {classification.codec_name or 'unknown'}")
    print(f"Pixel fmt: {classification.pix_fmt or 'unknown'}")
    if not classification.probed:
        print("  (decided by extension, ffprobe not consulted)")
    return 0


def cmd_load(args, config: ConfigService) -> int:
    pipeline = build_pipeline(config)
    request = pipeline.request_load(args.path, args.target)

    last_reported = [-10.0]

    def on_event(event):
        if isinstance(event, LoadProgress) and event.percent - last_reported[0] >= 10:
            last_reported[0] = event.percent
            print(f"  → {request.state.value}: {event.percent:.0f}%")

    request.subscribe(on_event)

    try:
        asset = request.result(args.timeout)
    except KeyboardInterrupt:
        print("\nCancelling...")
        pipeline.cancel(args.path)
        request.wait(10)
        return 130
    except TimeoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        pipeline.cancel(args.path)
        return 1
    except ClipCacheError as e:
        print(f"Error [{e.kind.value}]: {e.message}", file=sys.stderr)
        return 1
    finally:
        pipeline.shutdown()

    if isinstance(asset, DirectStream):
        print(f"Ready: stream {asset.path}")
    else:
        print(f"Ready: {asset.frame_count} frames at {asset.frame_rate:g} fps")
        if asset.frames:
            print(f"  {asset.frames[0].parent}")
    return 0


def cmd_cache_list(args, config: ConfigService) -> int:
    pipeline = build_pipeline(config)
    pairs = pipeline.cache_store.list_with_directories()
    if not pairs:
        print("No cached sequences")
        return 0

    for frame_directory, entry in pairs:
        print(f"{frame_directory.name}")
        print(f"  source: {entry.source_path}")
        print(f"  frames: {entry.frame_count} @ {entry.frame_rate:g} fps")
        print(f"  size:   {get_dir_size_bytes(frame_directory) / (1024 * 1024):.1f} MB")
    print(f"\n{len(pairs)} cached sequence(s)")
    return 0


def cmd_cache_purge(args, config: ConfigService) -> int:
    pipeline = build_pipeline(config)
    removed = pipeline.cache_store.purge()
    print(f"Removed {removed} cached sequence(s)")
    return 0


def cmd_serve(args, config: ConfigService) -> int:
    import uvicorn

    from clipcache.server import create_app

    url = f"http://{args.host}:{args.port}"
    print(f"clipcache server running at {url} (API docs: {url}/api/docs)")
    print("Press Ctrl+C to stop")

    if not args.no_browser:
        webbrowser.open(f"{url}/api/docs")

    uvicorn.run(create_app(config=config), host=args.host, port=args.port, reload=False)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clipcache",
        description="Classify, convert and cache media sources for playback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument(
        "--config",
        help="Path to a pipeline_config.json (default: bundled config)"
    )
    parser.add_argument(
        "--no-log",
        action="store_true",
        help="Don't write a log file"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_classify = sub.add_parser("classify", help="Classify a source file")
    p_classify.add_argument("path", help="Source media file")
    p_classify.set_defaults(func=cmd_classify)

    p_load = sub.add_parser("load", help="Load a source, converting or extracting frames if needed")
    p_load.add_argument("path", help="Source media file")
    p_load.add_argument("--target", default="cli", help="Playback target name (default: cli)")
    p_load.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Give up waiting after this many seconds (default: wait for the job)"
    )
    p_load.set_defaults(func=cmd_load)

    p_cache = sub.add_parser("cache", help="Inspect or clear the sequence cache")
    cache_sub = p_cache.add_subparsers(dest="cache_command", required=True)
    cache_sub.add_parser("list", help="List cached sequences").set_defaults(func=cmd_cache_list)
    cache_sub.add_parser("purge", help="Delete every cached sequence").set_defaults(func=cmd_cache_purge)

    p_serve = sub.add_parser("serve", help="Run the HTTP/WebSocket server")
    p_serve.add_argument("--host", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    p_serve.add_argument("--port", type=int, default=5000, help="Server port (default: 5000)")
    p_serve.add_argument("--no-browser", action="store_true", help="Don't auto-open browser")
    p_serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = ConfigService(args.config) if args.config else ConfigService()

    if args.no_log:
        return args.func(args, config)

    with LogCapture(config.cache_dir / "logs", max_logs=config.max_logs):
        return args.func(args, config)


if __name__ == "__main__":
    sys.exit(main())
