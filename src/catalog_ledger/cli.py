"""Command-line entry points for the catalog ledger.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into calls on the business layer. Results are printed
as JSON so the output matches what the REST endpoints return.
"""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, data_manager, log, set_log_level, setup_store


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="catalog-ledger",
        description="Command-line tools for the catalog ledger JSON documents.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug messages.",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare commands that change the documents."""
    specs = {
        "init": register_init_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "deactivate-product": register_deactivate_product_command(subparsers),
        "sale": register_sale_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only commands, the HTTP server included."""
    specs = {
        "products": register_products_command(subparsers),
        "sales": register_sales_command(subparsers),
        "serve": register_serve_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_init_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``init``."""
    name = "init"
    help_text = "Create empty product and sale documents."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--force", action="store_true", help="Overwrite existing documents.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_init)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Add a product to the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--price", required=True, type=_parse_decimal)
        parser.add_argument("--stock", required=True, type=int)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Change selected fields of a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--id", dest="product_id", required=True, type=int)
        parser.add_argument("--name", default=None)
        parser.add_argument("--price", default=None, type=_parse_decimal)
        parser.add_argument("--stock", default=None, type=int)
        state = parser.add_mutually_exclusive_group()
        state.add_argument("--active", dest="active", action="store_const", const=True, default=None)
        state.add_argument("--inactive", dest="active", action="store_const", const=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_product)


def register_deactivate_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``deactivate-product``."""
    name = "deactivate-product"
    help_text = "Soft-delete a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--id", dest="product_id", required=True, type=int)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_deactivate_product)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            type=_parse_item,
            metavar="PRODUCT_ID:QTY",
            help="Cart entry; repeat for several products.",
        )
        parser.add_argument("--user-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""
    name = "products"
    help_text = "List products."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--all", dest="include_inactive", action="store_true", help="Include inactive products.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_products_report)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "List recorded sales."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales_report)


def register_serve_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``serve``."""
    name = "serve"
    help_text = "Run the REST API."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--host", default=None, help="Overrides Server.Host.")
        parser.add_argument("--port", default=None, type=int, help="Overrides Server.Port.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_serve)


def _parse_decimal(raw: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid number: {raw!r}") from exc


def _parse_item(raw: str) -> Dict[str, int]:
    """Parse a ``PRODUCT_ID:QTY`` pair into a cart entry."""
    product_id, sep, quantity = raw.partition(":")
    if not sep:
        raise argparse.ArgumentTypeError(f"expected PRODUCT_ID:QTY, got {raw!r}")
    try:
        return {"productId": int(product_id), "quantity": int(quantity)}
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected integers in {raw!r}") from exc


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def emit(payload: Any) -> None:
    """Print ``payload`` as indented JSON on stdout."""
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into create-product keyword arguments."""
    return {"name": args.name, "price": args.price, "stock": args.stock}


def translate_update_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into update-product keyword arguments."""
    return {
        "name": args.name,
        "price": args.price,
        "stock": args.stock,
        "active": args.active,
    }


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(items=list(args.items), user_id=args.user_id)


def run_init(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Create the empty documents named by the configuration."""
    paths = setup_store.create_data_documents(context.settings, overwrite=args.force)
    log.info("Initialized documents: %s", ", ".join(str(p) for p in paths))
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the create-product workflow in the BLL."""
    product = core_logic.create_product(context, **translate_add_product(args))
    emit(data_manager.serialize_product(product))
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-product workflow in the BLL."""
    product = core_logic.update_product(context, args.product_id, **translate_update_product(args))
    emit(data_manager.serialize_product(product))
    return 0


def run_deactivate_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the deactivate-product workflow in the BLL."""
    product = core_logic.deactivate_product(context, args.product_id)
    emit(data_manager.serialize_product(product))
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    sale = core_logic.record_sale(context, translate_sale(args))
    emit(data_manager.serialize_sale(sale))
    return 0


def run_products_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the product listing."""
    products = core_logic.list_products(context, include_inactive=args.include_inactive)
    emit([data_manager.serialize_product(p) for p in products])
    return 0


def run_sales_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the sales ledger."""
    emit([data_manager.serialize_sale(s) for s in core_logic.list_sales(context)])
    return 0


def run_serve(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Serve the REST API until interrupted."""
    from .web import create_app

    host = args.host or context.settings.host
    port = args.port if args.port is not None else context.settings.port
    log.info("Serving catalog ledger on http://%s:%s", host, port)
    create_app(context).run(host=host, port=port)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    log.error("%s", error)
    if isinstance(error, core_logic.CatalogError):
        return 2
    if isinstance(error, FileNotFoundError):
        return 3
    if isinstance(error, data_manager.StorageError) and isinstance(error.__cause__, FileNotFoundError):
        return 3
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    if getattr(args, "verbose", False):
        set_log_level(logging.DEBUG)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
