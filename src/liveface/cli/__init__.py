"""Command-line interface for liveface."""

import sys
import argparse
import logging


def _add_trace_args(parser):
    """Add --trace, --trace-output args to a parser."""
    parser.add_argument("--trace", choices=["off", "minimal", "normal", "verbose"], default="off")
    parser.add_argument("--trace-output", type=str, help="Output file for trace records (JSONL)")


def _add_store_args(parser):
    parser.add_argument(
        "--photos", type=str, required=True, metavar="PATH",
        help="JSON photo store ({\"users\": {id: {\"profile_image_url\", \"photos\"}}})",
    )
    parser.add_argument(
        "--records", type=str, metavar="PATH",
        help="JSON file receiving verification records on success",
    )


def main():
    parser = argparse.ArgumentParser(
        description="LiveFace - Live face verification",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  liveface info                                        # Config and components
  liveface run 0 --user u1 --photos photos.json        # Verify from webcam 0
  liveface run clip.mp4 --user u1 --photos photos.json # Verify from a video file
  liveface match selfie.jpg https://example.com/me.jpg # One-off image comparison
  liveface serve --user-photos photos.json             # ZMQ verification service
""",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # info command
    subparsers.add_parser(
        "info",
        help="Show configuration and available components",
        description="Display effective configuration (with LIVEFACE_* overrides) and optional backends.",
    )

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Run a verification session on a camera or video",
        description="Drive one verification session from a camera index or video file.",
    )
    run_parser.add_argument("source", help="Camera index (e.g. 0) or path to video file")
    run_parser.add_argument("--user", required=True, help="User id to verify")
    _add_store_args(run_parser)
    run_parser.add_argument("--mirror", action="store_true", help="Negate yaw (mirrored selfie camera)")
    run_parser.add_argument(
        "--max-frames", type=int, default=None, metavar="N",
        help="Stop feeding frames after N frames",
    )
    run_parser.add_argument("--json", action="store_true", help="Print the final result as JSON")
    _add_trace_args(run_parser)

    # match command
    match_parser = subparsers.add_parser(
        "match",
        help="Compare a face image with reference photo URLs",
        description="Extract the face signature of IMAGE and score it against each reference URL.",
    )
    match_parser.add_argument("image", help="Path to probe image")
    match_parser.add_argument("references", nargs="+", help="Reference photo URLs")
    match_parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    # serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Serve verification sessions over ZMQ",
        description="Run a REQ-REP verification service (requires pyzmq).",
    )
    serve_parser.add_argument(
        "--address", type=str, default=None,
        help="Bind address (default: a fresh ipc:// socket, printed on startup)",
    )
    serve_parser.add_argument("--user-photos", dest="photos", type=str, required=True, metavar="PATH",
                              help="JSON photo store")
    serve_parser.add_argument("--records", type=str, metavar="PATH",
                              help="JSON file receiving verification records on success")
    serve_parser.add_argument("--no-detector", action="store_true",
                              help="Do not load MediaPipe; clients must send landmark frames")
    _add_trace_args(serve_parser)

    args = parser.parse_args()

    from liveface.cli.utils import configure_log_levels, suppress_thirdparty_noise

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="[%(levelname)s] %(name)s: %(message)s")
    else:
        suppress_thirdparty_noise()
        logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(name)s: %(message)s")
        configure_log_levels()

    from liveface.cli import commands

    if args.command == "info":
        commands.run_info(args)

    elif args.command == "run":
        sys.exit(commands.run_session(args))

    elif args.command == "match":
        sys.exit(commands.run_match(args))

    elif args.command == "serve":
        commands.run_serve(args)

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
