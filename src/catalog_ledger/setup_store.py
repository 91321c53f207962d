"""Utility for initializing the catalog ledger data documents.

The module doubles as a script (``python -m catalog_ledger.setup_store``) and
as a library used by the CLI ``init`` command and the tests.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

from . import data_manager
from .constants import CONFIG_FILE_NAME, DEFAULT_HOST, DEFAULT_PORT, DEFAULT_PRODUCTS_FILE, DEFAULT_SALES_FILE, Collection

CONFIG_TEMPLATE = (
    "[Storage]\n"
    "DataDir = {data_dir}\n"
    "ProductsFile = {products_file}\n"
    "SalesFile = {sales_file}\n"
    "SerializeWrites = {serialize_writes}\n\n"
    "[Server]\n"
    "Host = {host}\n"
    "Port = {port}\n"
)


def write_config(
    destination: Path,
    *,
    data_dir: str = "data",
    products_file: str = DEFAULT_PRODUCTS_FILE,
    sales_file: str = DEFAULT_SALES_FILE,
    serialize_writes: bool = False,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    overwrite: bool = False,
) -> Path:
    """Write a ``config.ini`` pointing at the given data directory.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is false.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing configuration: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(
        CONFIG_TEMPLATE.format(
            data_dir=data_dir,
            products_file=products_file,
            sales_file=sales_file,
            serialize_writes=str(serialize_writes).lower(),
            host=host,
            port=port,
        ),
        encoding="utf-8",
    )
    return destination


def create_data_documents(settings: data_manager.ConfigSettings, *, overwrite: bool = False) -> tuple[Path, Path]:
    """Create empty product and sale documents at the configured paths.

    Both targets are checked before either is written, so a refusal leaves the
    data directory as it was.

    Raises:
        FileExistsError: If a document exists and ``overwrite`` is false.
        StorageError: If a document cannot be written.
    """

    store = data_manager.open_store(settings)
    targets = (store.path_for(Collection.PRODUCTS), store.path_for(Collection.SALES))
    if not overwrite:
        for target in targets:
            if target.exists():
                raise FileExistsError(f"Refusing to overwrite existing document: {target}")

    store.save(Collection.PRODUCTS, [])
    store.save(Collection.SALES, [])
    return targets


def run_from_config(config_path: Path, *, overwrite: bool = False) -> tuple[Path, Path]:
    """Read ``config_path`` and create the documents it describes."""

    resolved = Path(config_path).expanduser().resolve()
    parser = data_manager.read_config(resolved)
    settings = data_manager.parse_settings(parser, base_path=resolved.parent)
    return create_data_documents(settings, overwrite=overwrite)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the catalog ledger data documents")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE_NAME,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the documents if they already exist.",
    )
    parser.add_argument(
        "--write-config",
        action="store_true",
        help="Write a default configuration at --config before creating the documents.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Catalog Ledger Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        if args.write_config:
            write_config(config_path, overwrite=args.force)
            print(f"Wrote configuration: {config_path}")
        products_path, sales_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing files if appropriate.")
        return 1
    except data_manager.StorageError as exc:
        print(f"\n[ERROR] Unable to write documents: {exc}")
        return 1

    print(f"\n[SUCCESS] Created '{products_path}' and '{sales_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
