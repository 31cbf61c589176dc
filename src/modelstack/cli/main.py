#!/usr/bin/env python3
"""
modelstack CLI - Main entry point.

Usage:
    modelstack serve --config-dir server     # Run the REST service
    modelstack check --config-dir server     # Validate model and datasource configs
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from ..core.errors import ModelStackError
from ..datasource.factory import create_connector
from ..service.app import build_registry
from ..service.config import AppSettings, load_datasource_configs, load_model_configs


def _settings(args: argparse.Namespace) -> AppSettings:
    overrides = {}
    if getattr(args, "config_dir", None):
        overrides["config_dir"] = args.config_dir
    if getattr(args, "host", None):
        overrides["host"] = args.host
    if getattr(args, "port", None):
        overrides["port"] = args.port
    return AppSettings(**overrides)


def cmd_check(args: argparse.Namespace) -> int:
    """Load and resolve the configured models without connecting."""
    settings = _settings(args)
    try:
        models = load_model_configs(settings.config_dir)
        datasources = load_datasource_configs(settings.config_dir)
        connectors = {name: create_connector(config) for name, config in datasources.items()}
        registry = build_registry(settings, models, connectors)
    except ModelStackError as e:
        print(f"Error: {e.message}")
        return 1

    print(f"OK: {len(registry)} models, {len(connectors)} datasources")
    for model in registry:
        relations = ", ".join(f"{name}->{rel.model}" for name, rel in model.config.relations.items())
        print(f"  {model.name} ({model.collection}){f': {relations}' if relations else ''}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the REST service with uvicorn."""
    import uvicorn

    from ..service.app import create_app

    settings = _settings(args)
    try:
        app = create_app(settings)
    except ModelStackError as e:
        print(f"Error: {e.message}")
        return 1

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="modelstack",
        description="modelstack - declarative models to a REST API over a document store"
    )
    parser.add_argument("--version", action="version", version="%(prog)s 0.1.0")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the REST service")
    serve_parser.add_argument("--config-dir", "-c", help="Directory with models/ and datasources.json")
    serve_parser.add_argument("--host", help="Bind host")
    serve_parser.add_argument("--port", "-p", type=int, help="Bind port")

    # check
    check_parser = subparsers.add_parser("check", help="Validate model and datasource configs")
    check_parser.add_argument("--config-dir", "-c", help="Directory with models/ and datasources.json")

    return parser


def app(args: Optional[List[str]] = None) -> int:
    """Main CLI application."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 0

    commands = {
        "serve": cmd_serve,
        "check": cmd_check,
    }

    handler = commands.get(parsed.command)
    if handler:
        return handler(parsed)

    parser.print_help()
    return 1


def main() -> None:
    """Entry point for CLI."""
    sys.exit(app())


if __name__ == "__main__":
    main()
