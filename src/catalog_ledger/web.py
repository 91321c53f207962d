"""Flask adapter exposing the catalog and sales operations as REST endpoints.

Routes only parse JSON bodies and serialise results; every rule lives in
:mod:`catalog_ledger.core_logic`. Errors raised by the core are turned into
``{"error": ..., "detail": ...}`` responses by the handlers registered in
:func:`create_app`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from flask import Blueprint, Flask, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from . import core_logic, data_manager, log

EXTENSION_KEY = "catalog_ledger"

catalog_bp = Blueprint("catalog", __name__)


def _context() -> core_logic.RuntimeContext:
    return current_app.extensions[EXTENSION_KEY]


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _product_json(product: data_manager.ProductRow) -> Dict[str, Any]:
    return data_manager.serialize_product(product)


@catalog_bp.get("/productos")
def list_products():
    """Return the active products."""
    products = core_logic.list_active_products(_context())
    return jsonify([_product_json(p) for p in products]), 200


@catalog_bp.post("/producto")
def create_product():
    """Create a product from ``{name, price, stock}``."""
    payload = _json_body()
    product = core_logic.create_product(
        _context(),
        name=payload.get("name"),
        price=payload.get("price"),
        stock=payload.get("stock"),
    )
    return {"message": "Product created.", "product": _product_json(product)}, 201


@catalog_bp.put("/producto")
def update_product():
    """Apply ``{id, name?, price?, stock?, active?}`` to an existing product."""
    payload = _json_body()
    product = core_logic.update_product(
        _context(),
        payload.get("id"),
        name=payload.get("name"),
        price=payload.get("price"),
        stock=payload.get("stock"),
        active=payload.get("active"),
    )
    return {"message": "Product updated.", "product": _product_json(product)}, 200


@catalog_bp.delete("/producto")
def delete_product():
    """Soft-delete the product named by ``{id}``."""
    payload = _json_body()
    product = core_logic.deactivate_product(_context(), payload.get("id"))
    return {"message": f"Product {product.product_id} deleted."}, 200


@catalog_bp.post("/venta")
def create_sale():
    """Record a sale from ``{items: [{productId, quantity}], userId?}``."""
    payload = _json_body()
    command = core_logic.SaleCommand(items=payload.get("items"), user_id=payload.get("userId"))
    sale = core_logic.record_sale(_context(), command)
    return {"message": "Sale recorded.", "sale": data_manager.serialize_sale(sale)}, 201


@catalog_bp.get("/ventas")
def list_sales():
    """Return every recorded sale in insertion order."""
    sales = core_logic.list_sales(_context())
    return jsonify([data_manager.serialize_sale(s) for s in sales]), 200


def _error(status: int, message: str, detail: Optional[str] = None):
    body: Dict[str, Any] = {"error": message}
    if detail:
        body["detail"] = detail
    return body, status


def register_error_handlers(app: Flask) -> None:
    """Map the core error taxonomy onto HTTP status codes."""

    @app.errorhandler(core_logic.ValidationError)
    def handle_validation(exc: core_logic.ValidationError):
        return _error(400, str(exc))

    @app.errorhandler(core_logic.NotFoundError)
    def handle_not_found(exc: core_logic.NotFoundError):
        return _error(404, str(exc))

    @app.errorhandler(core_logic.ConflictError)
    def handle_conflict(exc: core_logic.ConflictError):
        return _error(409, str(exc))

    @app.errorhandler(data_manager.StorageError)
    def handle_storage(exc: data_manager.StorageError):
        log.error("%s %s failed: %s", request.method, request.path, exc)
        cause = exc.__cause__ if exc.__cause__ is not None else exc
        return _error(500, "Storage failure.", str(cause))

    @app.errorhandler(HTTPException)
    def handle_http(exc: HTTPException):
        if exc.code == 404:
            return _error(404, f"Route {request.method} {request.path} does not exist.")
        return _error(exc.code or 500, exc.description or exc.name)

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        log.exception("%s %s failed unexpectedly", request.method, request.path)
        return _error(500, "Internal server error.", str(exc))


def create_app(
    context: Optional[core_logic.RuntimeContext] = None,
    *,
    config_path: Optional[Path] = None,
) -> Flask:
    """Build the Flask application around ``context``.

    When no context is supplied one is loaded from ``config_path`` (or from
    the ``config.ini`` found above the working directory).
    """
    if context is None:
        context = core_logic.load_runtime_context(config_path)

    app = Flask(__name__)
    app.json.sort_keys = False
    app.extensions[EXTENSION_KEY] = context
    app.register_blueprint(catalog_bp)
    register_error_handlers(app)
    log.info("Created web application for store %r", context.store)
    return app
