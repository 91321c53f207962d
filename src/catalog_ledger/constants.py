"""Constants shared by the storage, service and presentation layers."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


CONFIG_FILE_NAME = "config.ini"
DEFAULT_PRODUCTS_FILE = "productos.json"
DEFAULT_SALES_FILE = "ventas.json"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000

# Every monetary field is quantized to cents.
MONEY_QUANTUM = Decimal("0.01")

# Significant digits available to money arithmetic; larger amounts are rejected.
MONEY_PRECISION = 40

# Pretty-print indentation for the persisted documents.
JSON_INDENT = 2


class Collection(str, Enum):
    """Enumerate the JSON documents managed by the store."""

    PRODUCTS = "products"
    SALES = "sales"


__all__ = [
    "CONFIG_FILE_NAME",
    "DEFAULT_PRODUCTS_FILE",
    "DEFAULT_SALES_FILE",
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "MONEY_QUANTUM",
    "MONEY_PRECISION",
    "JSON_INDENT",
    "Collection",
]
