#!/usr/bin/env python3
"""
mintvault CLI

Allowlist tooling and configuration inspection.

Usage:
    mintvault [--format json|yaml|text] [--config FILE] <command> <subcommand> [options]

Commands:
    allowlist root FILE                         Compute the allowlist root
    allowlist proof FILE ADDRESS                Build a membership proof
    allowlist verify --root R --address A --proof P...
                                                Check a membership proof
    config show|get PATH|validate|schema        Configuration management

FILE is a YAML/JSON list of addresses (or a mapping with an ``addresses``
key) or a text file with one address per line.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

import yaml

from mintvault import __version__, merkle
from mintvault.config import ConfigManager, get_config_manager
from mintvault.hardening import Validators
from mintvault.observability import Layer, configure_logging, get_logger

logger = get_logger("cli", Layer.CLI)
allowlist_logger = get_logger("allowlist", Layer.ALLOWLIST)


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    return _format_text(data)


def _format_text(data: Any) -> str:
    if isinstance(data, dict):
        lines = []
        for key, value in data.items():
            if isinstance(value, list):
                lines.append(f"{key}:")
                lines.extend(f"  {item}" for item in value)
            else:
                lines.append(f"{key}: {value}")
        return "\n".join(lines)
    if isinstance(data, list):
        return "\n".join(str(item) for item in data)
    return str(data)


class MintVaultCLI:
    """Main CLI application."""

    def __init__(self, manager: Optional[ConfigManager] = None):
        self._manager = manager
        self.parser = argparse.ArgumentParser(
            prog="mintvault",
            description="Allowlist and configuration tooling for mintvault collections",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"mintvault {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "text"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Configuration file (YAML)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_allowlist_commands()
        self._register_config_commands()

    def _register_allowlist_commands(self) -> None:
        """Register allowlist subcommands."""
        allowlist = self.subparsers.add_parser("allowlist", help="Merkle allowlist tooling")
        allowlist_sub = allowlist.add_subparsers(dest="subcommand")

        # allowlist root
        root = allowlist_sub.add_parser("root", help="Compute the allowlist root")
        root.add_argument("file", help="Address list file")
        root.add_argument("--leaves", action="store_true", help="Include leaf digests")

        # allowlist proof
        proof = allowlist_sub.add_parser("proof", help="Build a membership proof")
        proof.add_argument("file", help="Address list file")
        proof.add_argument("address", help="Member address")

        # allowlist verify
        verify = allowlist_sub.add_parser("verify", help="Verify a membership proof")
        verify.add_argument("--root", "-r", required=True, help="Allowlist root (64 hex)")
        verify.add_argument("--address", "-a", required=True, help="Member address")
        verify.add_argument("--proof", "-p", nargs="*", default=[], help="Sibling digests, leaf to root")

    def _register_config_commands(self) -> None:
        """Register config subcommands."""
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        # config show
        config_sub.add_parser("show", help="Show effective configuration")

        # config get
        get_cmd = config_sub.add_parser("get", help="Get a configuration value")
        get_cmd.add_argument("path", help="Config path (e.g., collection.capacity)")

        # config validate
        config_sub.add_parser("validate", help="Validate configuration")

        # config schema
        config_sub.add_parser("schema", help="Export configuration schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            manager = self._config_manager(parsed)
            observability = manager.config.observability
            configure_logging(observability.log_level.get(), observability.log_format.get(), sys.stderr)

            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            # Failed checks report through the exit status as well as the output.
            if isinstance(result, dict) and result.get("valid") is False:
                return 1
            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except Exception as e:
            logger.debug(f"{parsed.command} failed: {e}", operation=parsed.command, exc_info=True)
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _config_manager(self, args: argparse.Namespace) -> ConfigManager:
        if self._manager is None:
            self._manager = get_config_manager()
            if not args.config:
                self._manager.load_defaults()
        if args.config:
            self._manager.load_from_file(args.config)
            args.config = None
        return self._manager

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}", exit_code=2)

        return handler(args)

    # Allowlist handlers
    def _load_addresses(self, file: str) -> List[str]:
        path = Path(file)
        if not path.exists():
            raise CLIError(f"Address file not found: {path}")
        return merkle.load_addresses(path)

    def _handle_allowlist_root(self, args: argparse.Namespace) -> Any:
        addresses = self._load_addresses(args.file)
        built = merkle.build_allowlist(addresses)
        allowlist_logger.info(
            f"Computed allowlist root over {built['size']} addresses",
            operation="allowlist_root",
            root=built["root"],
        )
        result = {"root": built["root"], "size": built["size"]}
        if args.leaves:
            result["leaves"] = built["leaves"]
        return result

    def _handle_allowlist_proof(self, args: argparse.Namespace) -> Any:
        addresses = self._load_addresses(args.file)
        address = Validators.validate_address(args.address).unwrap()
        try:
            proof = merkle.build_proof(addresses, address)
        except ValueError as e:
            raise CLIError(str(e)) from e
        return {
            "address": address,
            "leaf": merkle.leaf_hash(address),
            "root": merkle.build_allowlist(addresses)["root"],
            "proof": proof,
        }

    def _handle_allowlist_verify(self, args: argparse.Namespace) -> Any:
        valid = merkle.verify_address(args.proof, args.root, args.address)
        allowlist_logger.debug(
            f"Proof for {args.address} {'accepted' if valid else 'rejected'}",
            operation="allowlist_verify",
        )
        return {"valid": valid, "address": args.address.strip().lower(), "root": args.root}

    # Config handlers
    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return self._manager.config.to_dict()

    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        value = self._manager.get(args.path)
        if hasattr(value, "__dataclass_fields__"):
            raise CLIError(f"{args.path} is a section; use 'config show'")
        return {"path": args.path, "value": value}

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = self._manager.validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return self._manager.export_schema()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    cli = MintVaultCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
