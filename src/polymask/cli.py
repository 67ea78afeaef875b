"""
Command-line interface for polymask.

Provides commands for colour selection, detection decoding, mask
rasterization and writing a default configuration file.
"""

import argparse
import sys

from polymask.config import load_config, save_default_config
from polymask.tracer import configure_tracer, get_tracer


def _add_common_arguments(parser, with_debug=True):
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to YAML configuration file",
    )
    if with_debug:
        parser.add_argument(
            "--debug",
            action="store_true",
            help="Enable debug artifact generation",
        )
    parser.add_argument(
        "--trace",
        action="store_true",
        help="Enable runtime tracing",
    )
    parser.add_argument(
        "--trace-level",
        default="INFO",
        choices=["ERROR", "WARN", "INFO", "DEBUG"],
        help="Trace log level",
    )
    parser.add_argument(
        "--trace-file",
        default=None,
        help="Path to write trace logs",
    )
    parser.add_argument(
        "--trace-json",
        action="store_true",
        help="Enable JSON trace output",
    )


def build_parser():
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="polymask",
        description="polymask: polygon and mask geometry for layered image compositing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    select_parser = subparsers.add_parser("select", help="Select a colour region from a seed point")
    select_parser.add_argument("--image", "-i", required=True, help="Input image file")
    select_parser.add_argument(
        "--seed",
        nargs=2,
        type=float,
        required=True,
        metavar=("X", "Y"),
        help="Seed point in normalized coordinates",
    )
    select_parser.add_argument("--tolerance", type=float, default=None, help="Colour tolerance in [0, 1]")
    select_parser.add_argument("--max-points", type=int, default=None, help="Output vertex budget")
    select_parser.add_argument("--out", "-o", required=True, help="Output directory")
    _add_common_arguments(select_parser)

    detect_parser = subparsers.add_parser("detect", help="Decode saved detection model outputs")
    detect_parser.add_argument("--image", "-i", required=True, help="Source image the model ran on")
    detect_parser.add_argument("--predictions", "-p", required=True, help="Prediction array (.npy)")
    detect_parser.add_argument("--prototypes", default=None, help="Prototype bank array (.npy)")
    detect_parser.add_argument("--out", "-o", required=True, help="Output directory")
    _add_common_arguments(detect_parser)

    raster_parser = subparsers.add_parser("rasterize", help="Rasterize mask settings into an alpha PNG")
    raster_parser.add_argument("--mask", "-m", required=True, help="MaskSettings JSON file")
    raster_parser.add_argument("--width", type=int, required=True, help="Raster width in pixels")
    raster_parser.add_argument("--height", type=int, required=True, help="Raster height in pixels")
    raster_parser.add_argument("--out", "-o", required=True, help="Output PNG path")
    _add_common_arguments(raster_parser, with_debug=False)

    init_parser = subparsers.add_parser("init-config", help="Create default config file")
    init_parser.add_argument(
        "--out", "-o",
        default="polymask_config.yaml",
        help="Output path for config file",
    )

    return parser


def main(argv=None):
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "init-config":
        return handle_init_config(args)

    if args.trace:
        configure_tracer(
            enabled=True,
            level=args.trace_level,
            file_path=args.trace_file,
            json_output=args.trace_json,
        )
    else:
        # Fall back to the tracing section of the config file
        tracing = load_config(args.config).tracing
        configure_tracer(
            enabled=tracing.enabled,
            level=tracing.level,
            file_path=tracing.file_path,
            json_output=tracing.json_output,
        )

    handlers = {
        "select": handle_select,
        "detect": handle_detect,
        "rasterize": handle_rasterize,
    }
    try:
        return handlers[args.command](args)
    finally:
        get_tracer().config.close()


def handle_select(args):
    """Handle the select command."""
    tracer = get_tracer()

    try:
        from polymask.pipeline import run_color_selection

        with tracer.span("cli_select", module="cli"):
            result = run_color_selection(
                image_path=args.image,
                seed=args.seed,
                out_dir=args.out,
                tolerance=args.tolerance,
                max_points=args.max_points,
                config_path=args.config,
                debug=args.debug,
            )
    except Exception as e:
        tracer.event(f"Selection failed: {str(e)}", level="ERROR")
        print(f"\nError: {str(e)}", file=sys.stderr)
        return 1

    if result is None:
        print("\nNo region selected (region too small or boundary degenerate).")
        return 1

    print("\nSelection completed successfully.")
    print(f"  Pixels selected: {result.pixel_count}")
    print(f"  Polygon points: {len(result.path)}")
    print(f"\nOutputs saved to: {args.out}/")
    print("  - selection.json")
    print("  - mask.png")
    return 0


def handle_detect(args):
    """Handle the detect command."""
    tracer = get_tracer()

    try:
        from polymask.pipeline import run_detection

        with tracer.span("cli_detect", module="cli"):
            detections = run_detection(
                image_path=args.image,
                predictions_path=args.predictions,
                prototypes_path=args.prototypes,
                out_dir=args.out,
                config_path=args.config,
                debug=args.debug,
            )
    except Exception as e:
        tracer.event(f"Detection decode failed: {str(e)}", level="ERROR")
        print(f"\nError: {str(e)}", file=sys.stderr)
        return 1

    print("\nDetection decode completed successfully.")
    print(f"  Detections: {len(detections)}")
    print(f"\nOutputs saved to: {args.out}/")
    print("  - detections.json")
    print("  - detections.svg")
    return 0


def handle_rasterize(args):
    """Handle the rasterize command."""
    tracer = get_tracer()

    try:
        from polymask.pipeline import run_rasterize

        with tracer.span("cli_rasterize", module="cli"):
            run_rasterize(
                mask_path=args.mask,
                width=args.width,
                height=args.height,
                out_path=args.out,
                config_path=args.config,
            )
    except Exception as e:
        tracer.event(f"Rasterization failed: {str(e)}", level="ERROR")
        print(f"\nError: {str(e)}", file=sys.stderr)
        return 1

    print(f"Mask saved to: {args.out}")
    return 0


def handle_init_config(args):
    """Handle the init-config command."""
    save_default_config(args.out)
    print(f"Default configuration saved to: {args.out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
