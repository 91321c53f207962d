"""Business logic layer for the catalog ledger.

The service reads whole documents through the :class:`~catalog_ledger.data_manager.Store`
boundary, applies the catalog and sales rules in memory, and writes whole
documents back. Every public operation runs as one load-validate-mutate-save
sequence; nothing is written until every check of that operation has passed.
"""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from . import data_manager, log
from .constants import MONEY_PRECISION, MONEY_QUANTUM, Collection
from .data_manager import ProductRow, SaleLineRow, SaleRow, StorageError


class CatalogError(Exception):
    """Base class for errors raised by the catalog and sales rules."""


class ValidationError(CatalogError):
    """Raised when a request is malformed or misses a mandatory field."""


class NotFoundError(CatalogError):
    """Raised when a referenced product is absent or inactive."""


class ConflictError(CatalogError):
    """Raised when a sale asks for more units than are in stock."""


@dataclass(frozen=True)
class RuntimeContext:
    """Settings, store and optional write guard shared by every operation."""

    settings: data_manager.ConfigSettings
    store: data_manager.Store
    guard: Optional[threading.RLock] = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class SaleItem:
    """A validated cart entry."""

    product_id: int
    quantity: int


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording a sale.

    ``items`` holds the cart exactly as received (``productId`` and
    ``quantity`` per entry); :func:`record_sale` validates it.
    """

    items: Sequence[Mapping[str, Any]]
    user_id: Any = None
    timestamp: Optional[datetime] = None


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Resolve ``config.ini`` and build the context used by every operation.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upwards from the current
            working directory.

    Returns:
        RuntimeContext: Context backed by the configured JSON documents.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    context = build_runtime_context(settings)
    log.info("Loaded runtime context for data directory '%s'", settings.data_dir)
    return context


def build_runtime_context(
    settings: data_manager.ConfigSettings,
    store: Optional[data_manager.Store] = None,
) -> RuntimeContext:
    """Assemble a context, opening the JSON store unless ``store`` is given.

    A re-entrant lock is attached when ``settings.serialize_writes`` is set so
    that concurrent callers sharing the context run one operation at a time.
    """
    if store is None:
        store = data_manager.open_store(settings)
    guard = threading.RLock() if settings.serialize_writes else None
    return RuntimeContext(settings=settings, store=store, guard=guard)


@contextmanager
def _critical_section(context: RuntimeContext) -> Iterator[None]:
    # Without a guard, interleaved callers may both pass the stock check.
    if context.guard is None:
        yield
        return
    with context.guard:
        yield


def _load_products(context: RuntimeContext) -> List[ProductRow]:
    return [data_manager.deserialize_product(raw) for raw in context.store.load(Collection.PRODUCTS)]


def _save_products(context: RuntimeContext, products: Sequence[ProductRow]) -> None:
    context.store.save(Collection.PRODUCTS, [data_manager.serialize_product(p) for p in products])


def _find_index(products: Sequence[ProductRow], product_id: int, *, active_only: bool = False) -> Optional[int]:
    for idx, product in enumerate(products):
        if product.product_id == product_id and (product.active or not active_only):
            return idx
    return None


def round_money(amount: Decimal) -> Decimal:
    """Quantize ``amount`` to cents, rounding halves away from zero.

    Raises:
        ValidationError: If the amount needs more than ``MONEY_PRECISION``
            significant digits at cent precision.
    """
    with localcontext(prec=MONEY_PRECISION):
        try:
            return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
        except InvalidOperation as exc:
            log.error("Amount %s exceeds %d significant digits", amount, MONEY_PRECISION)
            raise ValidationError(f"Amount {amount} is too large") from exc


def _as_integer(value: Any) -> Optional[int]:
    """Return ``value`` as an ``int`` when it is an integral JSON number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def require_product_id(value: Any) -> int:
    """Validate the identifier sent with update and deactivate requests.

    Raises:
        ValidationError: If the id is missing or is not an integer.
    """
    if value is None:
        log.error("Product request rejected: missing id")
        raise ValidationError("Product id is required")
    product_id = _as_integer(value)
    if product_id is None:
        log.error("Product request rejected: id %r is not an integer", value)
        raise ValidationError(f"Product id must be an integer, got {value!r}")
    return product_id


def require_product_name(value: Any) -> str:
    """Return the trimmed name, rejecting blanks and non-text values."""
    if not isinstance(value, str) or not value.strip():
        log.error("Name validation failed: %r", value)
        raise ValidationError("Name must be a non-empty text")
    return value.strip()


def require_price(value: Any, *, coerce: bool = False) -> Decimal:
    """Validate a price and return it rounded to cents.

    Create requests must send a JSON number. With ``coerce`` set, numeric text
    is also accepted, matching the looser handling of update requests.

    Raises:
        ValidationError: If the value is not a finite, non-negative number.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal, str)):
        log.error("Price validation failed: %r", value)
        raise ValidationError("Price must be a non-negative number")
    if isinstance(value, str) and not coerce:
        log.error("Price validation failed: %r", value)
        raise ValidationError("Price must be a non-negative number")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        log.error("Price validation failed: %r", value)
        raise ValidationError("Price must be a non-negative number") from exc
    if not amount.is_finite() or amount < 0:
        log.error("Price validation failed: %r", value)
        raise ValidationError("Price must be a non-negative number")
    return round_money(amount)


def require_stock(value: Any, *, coerce: bool = False) -> int:
    """Validate a stock level.

    Create requests must send an integral number. With ``coerce`` set, floats
    are truncated and integer text is parsed, as update requests allow.

    Raises:
        ValidationError: If the value is not a non-negative integer.
    """
    stock = _as_integer(value)
    if stock is None and coerce and not isinstance(value, bool):
        try:
            if isinstance(value, float):
                stock = int(value)
            elif isinstance(value, str):
                stock = int(value.strip())
        except ValueError:
            stock = None
    if stock is None or stock < 0:
        log.error("Stock validation failed: %r", value)
        raise ValidationError("Stock must be an integer >= 0")
    return stock


def validate_sale_items(items: Any) -> tuple[SaleItem, ...]:
    """Check the shape of a cart before any product is looked up.

    Raises:
        ValidationError: If the cart is empty or not a list, or an entry lacks
            ``productId`` or a positive integer ``quantity``.
    """
    if not isinstance(items, (list, tuple)) or not items:
        log.error("Sale rejected: cart is empty or malformed")
        raise ValidationError(
            "The cart is empty or malformed; expected {items: [{productId, quantity}]}"
        )

    validated: List[SaleItem] = []
    for entry in items:
        if not isinstance(entry, Mapping):
            log.error("Sale rejected: cart entry %r is not an object", entry)
            raise ValidationError("Each item must carry productId and a quantity > 0")
        product_id = _as_integer(entry.get("productId"))
        quantity = _as_integer(entry.get("quantity"))
        if product_id is None or quantity is None or quantity <= 0:
            log.error("Sale rejected: invalid cart entry %r", entry)
            raise ValidationError("Each item must carry productId and a quantity > 0")
        validated.append(SaleItem(product_id=product_id, quantity=quantity))
    return tuple(validated)


def generate_sale_id() -> str:
    """Return a new random sale identifier."""
    return str(uuid.uuid4())


def format_timestamp(moment: datetime) -> str:
    """Render ``moment`` as an ISO-8601 UTC instant with millisecond precision."""
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def list_products(context: RuntimeContext, *, include_inactive: bool = False) -> List[ProductRow]:
    """Return products in document order, hiding inactive ones by default.

    Raises:
        StorageError: If the products document cannot be read.
    """
    with _critical_section(context):
        products = _load_products(context)
    if include_inactive:
        return products
    return [product for product in products if product.active]


def list_active_products(context: RuntimeContext) -> List[ProductRow]:
    """Return the products that can currently be sold."""
    return list_products(context)


def get_product(context: RuntimeContext, product_id: int) -> ProductRow:
    """Resolve a product by id whatever its active state.

    Raises:
        NotFoundError: If no product has ``product_id``.
    """
    with _critical_section(context):
        products = _load_products(context)
    idx = _find_index(products, product_id)
    if idx is None:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise NotFoundError(f"Product with id {product_id} not found")
    return products[idx]


def next_product_id(products: Sequence[ProductRow]) -> int:
    """Return ``max(existing ids) + 1``, or ``1`` for an empty catalog."""
    if not products:
        return 1
    return max(product.product_id for product in products) + 1


def create_product(context: RuntimeContext, *, name: Any, price: Any, stock: Any) -> ProductRow:
    """Validate and append a new active product.

    Raises:
        ValidationError: If ``name`` is blank, ``price`` is not a non-negative
            number, or ``stock`` is not a non-negative integer.
        StorageError: If the products document cannot be read or written.
    """
    clean_name = require_product_name(name)
    clean_price = require_price(price)
    clean_stock = require_stock(stock)

    with _critical_section(context):
        products = _load_products(context)
        product = ProductRow(
            product_id=next_product_id(products),
            name=clean_name,
            price=clean_price,
            stock=clean_stock,
            active=True,
        )
        products.append(product)
        _save_products(context, products)

    log.info(
        "Created product %s '%s' (price=%s, stock=%s)",
        product.product_id,
        product.name,
        product.price,
        product.stock,
    )
    return product


def update_product(
    context: RuntimeContext,
    product_id: Any,
    *,
    name: Any = None,
    price: Any = None,
    stock: Any = None,
    active: Any = None,
) -> ProductRow:
    """Apply a partial update to an existing product.

    Only fields passed as something other than ``None`` change. The product
    is found regardless of its active state, so ``active=True`` reactivates a
    deactivated product.

    Raises:
        ValidationError: If the id is missing or a supplied field is invalid.
        NotFoundError: If no product has ``product_id``.
        StorageError: If the products document cannot be read or written.
    """
    target_id = require_product_id(product_id)
    changes: Dict[str, Any] = {}
    if name is not None:
        changes["name"] = require_product_name(name)
    if price is not None:
        changes["price"] = require_price(price, coerce=True)
    if stock is not None:
        changes["stock"] = require_stock(stock, coerce=True)
    if active is not None:
        changes["active"] = bool(active)

    with _critical_section(context):
        products = _load_products(context)
        idx = _find_index(products, target_id)
        if idx is None:
            log.warning("Update failed: product '%s' not found", target_id)
            raise NotFoundError(f"Product with id {target_id} not found")
        products[idx] = replace(products[idx], **changes)
        _save_products(context, products)

    log.info("Updated product %s (fields: %s)", target_id, ", ".join(sorted(changes)) or "none")
    return products[idx]


def deactivate_product(context: RuntimeContext, product_id: Any) -> ProductRow:
    """Soft-delete a product by clearing its ``active`` flag.

    The row stays in the document so past sales keep a resolvable reference.
    Deactivating an inactive product is not an error.

    Raises:
        ValidationError: If the id is missing.
        NotFoundError: If no product has ``product_id``.
        StorageError: If the products document cannot be read or written.
    """
    target_id = require_product_id(product_id)

    with _critical_section(context):
        products = _load_products(context)
        idx = _find_index(products, target_id)
        if idx is None:
            log.warning("Deactivation failed: product '%s' not found", target_id)
            raise NotFoundError(f"Product with id {target_id} not found")
        products[idx] = replace(products[idx], active=False)
        _save_products(context, products)

    log.info("Deactivated product %s", target_id)
    return products[idx]


def _line_subtotal(price: Decimal, quantity: int) -> Decimal:
    with localcontext(prec=MONEY_PRECISION):
        return round_money(price * quantity)


def build_sale_lines(
    products: Sequence[ProductRow],
    items: Sequence[SaleItem],
) -> tuple[List[SaleLineRow], Dict[int, int]]:
    """Resolve every cart entry against ``products`` without mutating anything.

    Returns the priced lines and a mapping from product index to the total
    quantity requested for that product, cumulated over repeated entries.

    Raises:
        NotFoundError: If an entry references an unknown or inactive product.
        ConflictError: If the cumulated quantity exceeds the available stock.
        ValidationError: If a line subtotal is too large to price.
    """
    lines: List[SaleLineRow] = []
    requested: Dict[int, int] = {}
    for item in items:
        idx = _find_index(products, item.product_id, active_only=True)
        if idx is None:
            log.warning("Sale rejected: product '%s' not found or inactive", item.product_id)
            raise NotFoundError(f"Product with id {item.product_id} not found or inactive")

        product = products[idx]
        wanted = requested.get(idx, 0) + item.quantity
        if product.stock < wanted:
            log.warning(
                "Sale rejected: insufficient stock for '%s' (available=%s, requested=%s)",
                product.name,
                product.stock,
                wanted,
            )
            raise ConflictError(
                f'Insufficient stock for "{product.name}". '
                f"Available: {product.stock}, requested: {wanted}."
            )
        requested[idx] = wanted
        lines.append(
            SaleLineRow(
                product_id=product.product_id,
                product_name=product.name,
                quantity=item.quantity,
                unit_price=product.price,
                subtotal=_line_subtotal(product.price, item.quantity),
            )
        )
    return lines, requested


def record_sale(context: RuntimeContext, command: SaleCommand) -> SaleRow:
    """Validate a cart, decrement stock and append the sale to the ledger.

    Both documents are read and every entry is checked against the products
    snapshot before anything is written, so a rejected cart or an unreadable
    ledger leaves both documents untouched. Products are then written in one
    save and the sale appended in a second one.

    A failure of the second write leaves the stock already decremented; the
    error is logged and propagated, not rolled back.

    Raises:
        ValidationError: If the cart is empty, an entry is malformed or an
            amount is too large.
        NotFoundError: If an entry references an unknown or inactive product.
        ConflictError: If a product lacks stock for the requested quantity.
        StorageError: If a document cannot be read or written.
    """
    items = validate_sale_items(command.items)

    with _critical_section(context):
        products = _load_products(context)
        sales = context.store.load(Collection.SALES)
        lines, requested = build_sale_lines(products, items)
        with localcontext(prec=MONEY_PRECISION):
            total = round_money(sum((line.subtotal for line in lines), Decimal("0")))

        for idx, quantity in requested.items():
            products[idx] = replace(products[idx], stock=products[idx].stock - quantity)
        _save_products(context, products)

        moment = command.timestamp if command.timestamp is not None else datetime.now(UTC)
        sale = SaleRow(
            sale_id=generate_sale_id(),
            user_id=command.user_id,
            timestamp_iso=format_timestamp(moment),
            items=tuple(lines),
            total=total,
        )
        sales.append(data_manager.serialize_sale(sale))
        try:
            context.store.save(Collection.SALES, sales)
        except StorageError:
            log.error(
                "Sale '%s' was not recorded after stock was decremented for products %s",
                sale.sale_id,
                ", ".join(str(products[idx].product_id) for idx in requested),
            )
            raise

    log.info(
        "Recorded sale '%s' with %d line(s) (total=%s)",
        sale.sale_id,
        len(sale.items),
        sale.total,
    )
    return sale


def list_sales(context: RuntimeContext) -> List[SaleRow]:
    """Return every recorded sale in insertion order.

    Raises:
        StorageError: If the sales document cannot be read or is malformed.
    """
    with _critical_section(context):
        raw_sales = context.store.load(Collection.SALES)
    return [data_manager.deserialize_sale(raw) for raw in raw_sales]


__all__ = [
    "CatalogError",
    "ConflictError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
    "RuntimeContext",
    "SaleCommand",
    "SaleItem",
    "build_runtime_context",
    "create_product",
    "deactivate_product",
    "get_product",
    "list_active_products",
    "list_products",
    "list_sales",
    "load_runtime_context",
    "record_sale",
    "update_product",
]
