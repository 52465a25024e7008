# src/main.py — v2
"""CLI entry point — setup, status, run, cache commands.

Usage:
    tryon setup --api-key KEY --photo me.jpg
    tryon status
    tryon run <image> [-o result.png] [--regenerate]
    tryon cache clear|usage|invalidate <key>
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from tryon_engine.version import __version__

if TYPE_CHECKING:
    from tryon_engine.api.models import StorageUsage
    from tryon_engine.config.settings import Settings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_SETUP_REQUIRED = 2
EXIT_UPSTREAM = 3
EXIT_GENERATION_FAILED = 4
EXIT_INTERRUPTED = 130


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    from tryon_engine.config.settings import ConfigurationError, load_settings
    from tryon_engine.core.errors import AuthMissing, ImageResolutionError, UpstreamError

    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return EXIT_ERROR

    try:
        settings = load_settings(**_settings_overrides(args))
    except (ConfigurationError, ValueError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_ERROR

    _setup_logging(args.verbose, settings)

    try:
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except AuthMissing as exc:
        logger.error("Setup required: %s (run `tryon setup`)", exc)
        return EXIT_SETUP_REQUIRED
    except (UpstreamError, ImageResolutionError) as exc:
        logger.error("Try-on failed: %s", exc)
        return EXIT_UPSTREAM
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return EXIT_ERROR


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="tryon",
        description=f"tryon-engine v{__version__} — Virtual garment try-on",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--storage-root", type=Path, default=None,
        help="Storage area directory (default: from settings)",
    )
    parser.add_argument(
        "--backend", choices=["json", "sqlite", "memory"], default=None,
        help="Storage backend (default: from settings)",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- setup ---
    p_setup = subparsers.add_parser(
        "setup", help="Save the API key and/or the user photo",
    )
    p_setup.add_argument("--api-key", default=None, help="Gemini API key")
    p_setup.add_argument(
        "--photo", default=None,
        help="User photo (path, URL or data URL)",
    )
    p_setup.set_defaults(func=_cmd_setup)

    # --- status ---
    p_status = subparsers.add_parser(
        "status", help="Show setup state and storage usage",
    )
    p_status.set_defaults(func=_cmd_status)

    # --- run ---
    p_run = subparsers.add_parser(
        "run", help="Try a product image on the saved user photo",
    )
    p_run.add_argument("image", help="Product image (path, URL or data URL)")
    p_run.add_argument(
        "-o", "--output", type=Path, default=Path("./tryon_result.png"),
        help="Where to write the generated image (default: ./tryon_result.png)",
    )
    p_run.add_argument(
        "--regenerate", action="store_true",
        help="Ignore any cached result and generate again",
    )
    p_run.set_defaults(func=_cmd_run)

    # --- cache ---
    p_cache = subparsers.add_parser(
        "cache", help="Manage cached results",
    )
    p_cache.add_argument("action", choices=["clear", "usage", "invalidate"])
    p_cache.add_argument(
        "key", nargs="?", default=None,
        help="Cache key (required for invalidate)",
    )
    p_cache.set_defaults(func=_cmd_cache)

    return parser


async def _cmd_setup(args: argparse.Namespace, settings: Settings) -> int:
    """Persist credential and user photo."""
    from tryon_engine.api.facade import create_engine

    if args.api_key is None and args.photo is None:
        logger.error("Nothing to do: pass --api-key and/or --photo")
        return EXIT_ERROR

    async with create_engine(settings) as engine:
        await engine.initialize()
        if args.api_key is not None:
            await engine.save_credential(args.api_key)
        if args.photo is not None:
            await engine.save_user_photo(args.photo)
        status = await engine.check_setup_complete()

    print(f"\nSetup {'complete' if status.is_setup else 'incomplete'}:")
    print(f"  API key:     {'saved' if status.has_credential else 'missing'}")
    print(f"  User photo:  {'saved' if status.has_user_photo else 'missing'}")
    return EXIT_OK


async def _cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    """Display setup state and storage usage."""
    from tryon_engine.api.facade import create_engine

    async with create_engine(settings) as engine:
        status = await engine.status()

    print("\nStatus:")
    print(f"  Setup complete:  {status.setup.is_setup}")
    print(f"  API key:         {'saved' if status.setup.has_credential else 'missing'}")
    print(f"  User photo:      {'saved' if status.setup.has_user_photo else 'missing'}")
    print(f"  Try-ons so far:  {status.total_tryons}")
    _print_storage(status.storage)
    return EXIT_OK


async def _cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    """Execute a single try-on."""
    from tryon_engine.api.facade import create_engine

    async with create_engine(settings) as engine:
        await engine.initialize()
        if args.regenerate:
            artifact = await engine.regenerate(args.image)
        else:
            artifact = await engine.run_try_on(args.image)
        usage = engine.usage

    print(f"\nTry-on {'complete' if artifact.succeeded else 'failed'}:")
    print(f"  Cache key:     {artifact.cache_key}")
    print(f"  Product:       {artifact.product_garment.describe()}")
    print(f"  Replacing:     {artifact.user_garment.describe()}")
    print(f"  Upstream calls: {usage.total_calls} ({usage.total_tokens} tokens)")

    if not artifact.succeeded or artifact.generated_image is None:
        print(f"  Error:         {artifact.error}")
        return EXIT_GENERATION_FAILED

    output: Path = args.output
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(_decode_data_url(artifact.generated_image.uri))
    print(f"  Output:        {output}")
    return EXIT_OK


async def _cmd_cache(args: argparse.Namespace, settings: Settings) -> int:
    """Clear, inspect or invalidate cached results."""
    from tryon_engine.api.facade import create_engine

    if args.action == "invalidate" and not args.key:
        logger.error("cache invalidate requires a key")
        return EXIT_ERROR

    async with create_engine(settings) as engine:
        if args.action == "clear":
            removed = await engine.clear_cache()
            print(f"\nRemoved {removed} cached results")
        elif args.action == "invalidate":
            await engine.invalidate(args.key)
            print(f"\nInvalidated {args.key}")
        else:
            _print_storage(await engine.storage_usage())
            for key in await engine.cache.keys():
                print(f"    {key}")
    return EXIT_OK


def _settings_overrides(args: argparse.Namespace) -> dict[str, object]:
    overrides: dict[str, object] = {}
    if args.storage_root is not None:
        overrides["storage_root"] = args.storage_root
    if args.backend is not None:
        overrides["storage_backend"] = args.backend
    return overrides


def _decode_data_url(uri: str) -> bytes:
    """Decode the base64 payload of a ``data:`` URL."""
    _, _, payload = uri.partition(",")
    return base64.b64decode(payload)


def _print_storage(storage: StorageUsage) -> None:
    """Print a human-readable summary of StorageUsage."""
    print("\nStorage:")
    print(f"  Used:          {storage.total_bytes} / {storage.budget_bytes} bytes "
          f"({storage.fill_ratio:.0%})")
    print(f"  Cached:        {storage.cache_entries} results, {storage.cache_bytes} bytes")
    print(f"  Kept on trim:  {storage.retention_floor}")


def _setup_logging(verbose: bool, settings: Settings) -> None:
    """Configure logging for CLI usage."""
    from tryon_engine.logging.logger import setup_logging

    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format="text",
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )


if __name__ == "__main__":
    sys.exit(main())
