"""Command-line interface for the texture generator."""

import argparse
import logging
import os
import sys

from tqdm import tqdm

from . import __version__
from .config import GeneratorConfig
from .core import setup_logging

logger = logging.getLogger("photonic_ring")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="photonic-ring",
        description="Derive PBR height/normal/roughness maps and pack Terrain3D textures",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  photonic-ring generate rock_albedo.png
  photonic-ring generate textures/*.png -o textures/pbr --pack
  photonic-ring pack --albedo a.png --height h.png --normal n.png --roughness r.png
  photonic-ring --config photonic.yaml --workers 8 generate grass.png
  photonic-ring --generate-config photonic.yaml
        """
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", "-c", help="Path to config YAML")
    parser.add_argument("--workers", type=int, help="Max parallel workers")
    parser.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("--generate-config", metavar="PATH",
                        help="Write a default config YAML to PATH and exit")

    sub = parser.add_subparsers(dest="command")

    gen = sub.add_parser("generate", help="Generate height/normal/roughness maps")
    gen.add_argument("albedo", nargs="+", help="Albedo image(s)")
    gen.add_argument("--output", "-o", default="",
                     help="Output directory (default: beside each source)")
    gen.add_argument("--pack", action="store_true",
                     help="Also write the Terrain3D DDS pair from the generated maps")

    pack = sub.add_parser("pack", help="Pack four maps into Terrain3D DDS textures")
    pack.add_argument("--albedo", required=True)
    pack.add_argument("--height", required=True)
    pack.add_argument("--normal", required=True)
    pack.add_argument("--roughness", required=True)
    pack.add_argument("--output", "-o", default="",
                      help="Output directory (default: beside the albedo)")
    return parser


def _load_config(args) -> GeneratorConfig:
    if args.config:
        if not os.path.exists(args.config):
            logger.error("Config file not found: %s", args.config)
            print(f"Error: Config file not found: {args.config}")
            sys.exit(1)
        try:
            config = GeneratorConfig.from_yaml(args.config)
        except ValueError as e:
            logger.error("Invalid config file '%s': %s", args.config, e)
            print(f"Error: Invalid config: {e}")
            sys.exit(1)
    else:
        config = GeneratorConfig()

    # CLI overrides
    if args.workers is not None:
        config.max_workers = args.workers
    if args.log_level:
        config.log_level = args.log_level
    try:
        config.validate()
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    return config


def _report(result: dict, keys) -> bool:
    if result["success"]:
        for key in keys:
            if result.get(key):
                print(f"  {result[key]}")
        return True
    print(f"Error [{result['error_kind'] or 'Internal'}]: {result['error']}")
    return False


def main(argv=None):
    """Parse CLI arguments and run the requested operation."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.generate_config:
        dest = args.generate_config
        if os.path.isdir(dest):
            dest = os.path.join(dest, "photonic_ring.yaml")
        GeneratorConfig().to_yaml(dest)
        print(f"Generated default {dest}")
        return

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Surface from_yaml() warnings before full logging is configured.
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
    config = _load_config(args)
    setup_logging(config.log_level, args.log_file)

    from .pipeline import TextureGenerator
    generator = TextureGenerator(config)

    failures = 0
    if args.command == "generate":
        keys = ("height_path", "normal_path", "roughness_path",
                "albedo_h_path", "normal_r_path")
        for path in tqdm(args.albedo, desc="Generating", unit="file",
                         disable=len(args.albedo) < 2):
            result = generator.generate_maps(path, args.output, pack=args.pack)
            if result["success"]:
                print(f"{path}: {result['material']}")
            if not _report(result, keys):
                failures += 1
    elif args.command == "pack":
        result = generator.pack_terrain_3d(
            args.albedo, args.height, args.normal, args.roughness, args.output
        )
        if not _report(result, ("albedo_h_path", "normal_r_path")):
            failures += 1

    if failures:
        sys.exit(1)


if __name__ == "__main__":
    main()
