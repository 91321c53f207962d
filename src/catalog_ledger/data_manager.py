"""Data access layer for the catalog ledger.

This module owns every byte that reaches the disk. Business rules live in
:mod:`catalog_ledger.core_logic`.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Document lifecycle: loading and overwriting whole JSON documents through
   the :class:`Store` boundary.
3. Record conversion: turning raw JSON objects into typed rows and back.
"""


from __future__ import annotations

import configparser
import json
import os
import tempfile
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol, Sequence, Union

from . import log
from .constants import (
    CONFIG_FILE_NAME,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_PRODUCTS_FILE,
    DEFAULT_SALES_FILE,
    JSON_INDENT,
    Collection,
)


class StorageError(Exception):
    """Raised when a document cannot be read, parsed, or written."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_dir: Path
    products_file: Path
    sales_file: Path
    serialize_writes: bool = False
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of one entry of the products document."""

    product_id: int
    name: str
    price: Decimal
    stock: int
    active: bool = True


@dataclass(frozen=True)
class SaleLineRow:
    """One line of a sale, with name and price frozen at sale time."""

    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of one entry of the sales document."""

    sale_id: str
    user_id: Any
    timestamp_iso: str
    items: tuple[SaleLineRow, ...]
    total: Decimal


class Store(Protocol):
    """Whole-document persistence contract used by the service layer.

    ``load`` returns every record of a collection and ``save`` replaces the
    collection wholesale. Implementations may be backed by anything that can
    honour the full-read, full-overwrite semantics.
    """

    def load(self, collection: Union[Collection, str]) -> list[dict[str, Any]]:
        ...

    def save(self, collection: Union[Collection, str], records: Sequence[Mapping[str, Any]]) -> None:
        ...


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls where documents live.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in the working
            directory or any of its parents.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``Storage.DataDir`` is mandatory. A relative directory is anchored at
    ``base_path`` (normally the folder holding ``config.ini``) or the current
    working directory. Document file names, the write serialisation switch and
    the whole ``Server`` section fall back to defaults.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Anchor for a relative ``DataDir``.

    Returns:
        ConfigSettings: Immutable settings with absolute document paths.

    Raises:
        KeyError: If ``Storage.DataDir`` is missing.
        ValueError: If ``SerializeWrites`` or ``Port`` cannot be parsed.
    """

    try:
        data_dir_raw = parser.get("Storage", "DataDir")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    products_name = parser.get("Storage", "ProductsFile", fallback=DEFAULT_PRODUCTS_FILE)
    sales_name = parser.get("Storage", "SalesFile", fallback=DEFAULT_SALES_FILE)
    serialize_writes = parser.getboolean("Storage", "SerializeWrites", fallback=False)
    host = parser.get("Server", "Host", fallback=DEFAULT_HOST)
    port = parser.getint("Server", "Port", fallback=DEFAULT_PORT)

    data_dir = Path(data_dir_raw).expanduser()
    if not data_dir.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_dir = base_path / data_dir
    data_dir = data_dir.resolve()

    return ConfigSettings(
        data_dir=data_dir,
        products_file=data_dir / products_name,
        sales_file=data_dir / sales_name,
        serialize_writes=serialize_writes,
        host=host,
        port=port,
    )


class JsonFileStore:
    """:class:`Store` implementation keeping each collection in a JSON file.

    Every ``load`` parses the whole document and every ``save`` rewrites it.
    Writes go to a temporary sibling that atomically replaces the target, so a
    reader never observes a half-written document. There is no locking.
    """

    def __init__(self, products_file: Path, sales_file: Path) -> None:
        self._paths = {
            Collection.PRODUCTS: Path(products_file).expanduser().resolve(),
            Collection.SALES: Path(sales_file).expanduser().resolve(),
        }

    def __repr__(self) -> str:
        return (
            f"JsonFileStore(products_file={self._paths[Collection.PRODUCTS]!s}, "
            f"sales_file={self._paths[Collection.SALES]!s})"
        )

    def path_for(self, collection: Union[Collection, str]) -> Path:
        """Return the document path backing ``collection``.

        Raises:
            KeyError: If ``collection`` is not a known collection name.
        """

        try:
            return self._paths[Collection(collection)]
        except ValueError as exc:
            raise KeyError(f"Unknown collection: {collection}") from exc

    def load(self, collection: Union[Collection, str]) -> list[dict[str, Any]]:
        """Read and parse the whole document for ``collection``.

        Raises:
            StorageError: If the file is missing or unreadable, is not valid
                JSON, or does not hold an array of objects.
        """

        path = self.path_for(collection)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            log.error("Unable to read document '%s': %s", path, exc)
            raise StorageError(f"Unable to read {path}: {exc}") from exc

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            log.error("Document '%s' is not valid JSON: %s", path, exc)
            raise StorageError(f"Invalid JSON in {path}: {exc}") from exc

        if not isinstance(data, list) or not all(isinstance(entry, dict) for entry in data):
            log.error("Document '%s' is not an array of objects", path)
            raise StorageError(f"Expected an array of objects in {path}")

        log.debug("Loaded %d records from '%s'", len(data), path)
        return data

    def save(self, collection: Union[Collection, str], records: Sequence[Mapping[str, Any]]) -> None:
        """Overwrite the whole document for ``collection`` with ``records``.

        Raises:
            StorageError: If the records cannot be encoded or the file cannot
                be written.
        """

        path = self.path_for(collection)
        try:
            payload = json.dumps(list(records), indent=JSON_INDENT, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Unable to encode records for {path}: {exc}") from exc

        tmp_name: Optional[str] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as exc:
            log.error("Unable to write document '%s': %s", path, exc)
            raise StorageError(f"Unable to write {path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

        log.debug("Wrote %d records to '%s'", len(records), path)


def open_store(settings: ConfigSettings) -> JsonFileStore:
    """Build the JSON store described by ``settings``."""

    return JsonFileStore(settings.products_file, settings.sales_file)


def serialize_product(record: ProductRow) -> dict[str, Any]:
    """Convert a product dataclass into its JSON object form."""

    return {
        "id": record.product_id,
        "name": record.name,
        "price": float(record.price),
        "stock": record.stock,
        "active": record.active,
    }


def serialize_sale_line(record: SaleLineRow) -> dict[str, Any]:
    """Convert a sale line dataclass into its JSON object form."""

    return {
        "productId": record.product_id,
        "productName": record.product_name,
        "quantity": record.quantity,
        "unitPrice": float(record.unit_price),
        "subtotal": float(record.subtotal),
    }


def serialize_sale(record: SaleRow) -> dict[str, Any]:
    """Convert a sale dataclass into its JSON object form, lines included."""

    return {
        "id": record.sale_id,
        "userId": record.user_id,
        "timestamp": record.timestamp_iso,
        "items": [serialize_sale_line(line) for line in record.items],
        "total": float(record.total),
    }


def _to_decimal(raw: Any) -> Decimal:
    if isinstance(raw, bool):
        raise TypeError(f"Expected a number, got {raw!r}")
    return Decimal(str(raw))


def _to_integer(raw: Any) -> int:
    if isinstance(raw, bool):
        raise TypeError(f"Expected an integer, got {raw!r}")
    if isinstance(raw, float) and not raw.is_integer():
        raise ValueError(f"Expected an integer, got {raw!r}")
    return int(raw)


def deserialize_product(raw: Mapping[str, Any]) -> ProductRow:
    """Convert a raw JSON object into a typed product record.

    Raises:
        StorageError: If a mandatory key is missing or holds the wrong type.
    """

    try:
        return ProductRow(
            product_id=_to_integer(raw["id"]),
            name=str(raw["name"]),
            price=_to_decimal(raw["price"]),
            stock=_to_integer(raw["stock"]),
            active=bool(raw.get("active", True)),
        )
    except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
        raise StorageError(f"Malformed product record {raw!r}: {exc}") from exc


def deserialize_sale_line(raw: Mapping[str, Any]) -> SaleLineRow:
    """Convert a raw JSON object into a typed sale line.

    Raises:
        StorageError: If a mandatory key is missing or holds the wrong type.
    """

    try:
        return SaleLineRow(
            product_id=_to_integer(raw["productId"]),
            product_name=str(raw["productName"]),
            quantity=_to_integer(raw["quantity"]),
            unit_price=_to_decimal(raw["unitPrice"]),
            subtotal=_to_decimal(raw["subtotal"]),
        )
    except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
        raise StorageError(f"Malformed sale line {raw!r}: {exc}") from exc


def deserialize_sale(raw: Mapping[str, Any]) -> SaleRow:
    """Convert a raw JSON object into a typed sale record.

    Raises:
        StorageError: If a mandatory key is missing or holds the wrong type.
    """

    try:
        items = raw["items"]
        if not isinstance(items, list):
            raise TypeError("items must be an array")
        return SaleRow(
            sale_id=str(raw["id"]),
            user_id=raw.get("userId"),
            timestamp_iso=str(raw["timestamp"]),
            items=tuple(deserialize_sale_line(line) for line in items),
            total=_to_decimal(raw["total"]),
        )
    except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
        raise StorageError(f"Malformed sale record {raw!r}: {exc}") from exc
