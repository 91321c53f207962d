"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
import json
from decimal import Decimal
from pathlib import Path

import pytest

from catalog_ledger import constants, data_manager


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_parent_directory(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[Storage]\nDataDir=data\n")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    result = data_manager.find_config_file()
    assert result == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_data_dir(tmp_path):
    """A relative DataDir should be anchored at the supplied base path."""

    parser = configparser.ConfigParser()
    parser.read_string("[Storage]\nDataDir = store\nSalesFile = ledger.json\n")

    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.data_dir == (tmp_path / "store").resolve()
    assert settings.products_file == settings.data_dir / constants.DEFAULT_PRODUCTS_FILE
    assert settings.sales_file == settings.data_dir / "ledger.json"
    assert settings.serialize_writes is False
    assert settings.host == constants.DEFAULT_HOST
    assert settings.port == constants.DEFAULT_PORT


def test_parse_settings_reads_server_and_serialization(tmp_path):
    """Optional entries should override their defaults."""

    parser = configparser.ConfigParser()
    parser.read_string(
        f"[Storage]\nDataDir = {tmp_path}\nSerializeWrites = yes\n"
        "[Server]\nHost = 0.0.0.0\nPort = 8080\n"
    )

    settings = data_manager.parse_settings(parser)

    assert settings.data_dir == tmp_path.resolve()
    assert settings.serialize_writes is True
    assert settings.host == "0.0.0.0"
    assert settings.port == 8080


def test_parse_settings_requires_data_dir(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# JsonFileStore
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path):
    return data_manager.JsonFileStore(tmp_path / "products.json", tmp_path / "sales.json")


def test_save_then_load_returns_records(store):
    """save should persist records that load hands back unchanged."""

    records = [{"id": 1, "name": "Widget", "price": 10.0, "stock": 2, "active": True}]
    store.save(constants.Collection.PRODUCTS, records)

    assert store.load(constants.Collection.PRODUCTS) == records


def test_save_pretty_prints_document(store):
    """Documents should be indented JSON arrays for human inspection."""

    store.save("sales", [{"id": "abc", "items": []}])

    text = store.path_for("sales").read_text(encoding="utf-8")
    assert text.startswith("[\n  {")
    assert json.loads(text) == [{"id": "abc", "items": []}]


def test_round_trip_of_unmodified_collection_preserves_content(store):
    """save(load(X)) should yield a document equal in content to X."""

    path = store.path_for(constants.Collection.PRODUCTS)
    original = [
        {"id": 1, "name": "Café", "price": 1.5, "stock": 0, "active": False},
        {"id": 4, "name": "Té", "price": 0.99, "stock": 12, "active": True},
    ]
    path.write_text(json.dumps(original), encoding="utf-8")

    store.save(constants.Collection.PRODUCTS, store.load(constants.Collection.PRODUCTS))

    assert json.loads(path.read_text(encoding="utf-8")) == original


def test_save_leaves_no_temporary_files(store, tmp_path):
    """The atomic replace should not leave temporary siblings behind."""

    store.save(constants.Collection.PRODUCTS, [])
    store.save(constants.Collection.PRODUCTS, [{"id": 1}])

    assert sorted(p.name for p in tmp_path.iterdir()) == ["products.json"]


def test_save_creates_parent_directories(tmp_path):
    """Writing into a missing directory should create it on demand."""

    store = data_manager.JsonFileStore(tmp_path / "deep" / "p.json", tmp_path / "deep" / "s.json")
    store.save(constants.Collection.SALES, [])
    assert (tmp_path / "deep" / "s.json").exists()


def test_load_missing_document_raises_storage_error(store):
    """A missing file is a storage failure that keeps its cause."""

    with pytest.raises(data_manager.StorageError) as excinfo:
        store.load(constants.Collection.PRODUCTS)
    assert isinstance(excinfo.value.__cause__, FileNotFoundError)


@pytest.mark.parametrize("content", ["{not json", '{"id": 1}', "[1, 2]"])
def test_load_rejects_corrupt_documents(store, content):
    """Invalid JSON or a non-array document should raise StorageError."""

    store.path_for(constants.Collection.SALES).write_text(content, encoding="utf-8")
    with pytest.raises(data_manager.StorageError):
        store.load(constants.Collection.SALES)


def test_save_rejects_unencodable_records(store):
    """Records that JSON cannot encode should surface as StorageError."""

    with pytest.raises(data_manager.StorageError):
        store.save(constants.Collection.SALES, [{"when": object()}])


def test_unknown_collection_raises_key_error(store):
    """Only the products and sales collections exist."""

    with pytest.raises(KeyError):
        store.load("customers")


def test_open_store_uses_configured_paths(settings):
    """open_store should point at the files named in the settings."""

    store = data_manager.open_store(settings)
    assert store.path_for("products") == settings.products_file.resolve()
    assert store.path_for("sales") == settings.sales_file.resolve()


# ---------------------------------------------------------------------------
# Record conversion
# ---------------------------------------------------------------------------


def test_serialize_product_uses_json_field_names():
    """Products should be written with the documented keys."""

    row = data_manager.ProductRow(product_id=3, name="Widget", price=Decimal("10.00"), stock=2, active=True)
    assert data_manager.serialize_product(row) == {
        "id": 3,
        "name": "Widget",
        "price": 10.0,
        "stock": 2,
        "active": True,
    }


def test_deserialize_product_normalizes_types():
    """Prices become Decimals and a missing active flag defaults to True."""

    row = data_manager.deserialize_product({"id": 7, "name": "Soda", "price": 2.5, "stock": 4})
    assert row == data_manager.ProductRow(7, "Soda", Decimal("2.5"), 4, True)


@pytest.mark.parametrize(
    "raw",
    [
        {"name": "No id", "price": 1, "stock": 1},
        {"id": 1, "name": "Bad price", "price": "abc", "stock": 1},
        {"id": 1, "name": "Bool price", "price": True, "stock": 1},
        {"id": 1, "name": "Fractional stock", "price": 1, "stock": 1.5},
        {"id": 1.5, "name": "Fractional id", "price": 1, "stock": 1},
        {"id": 1, "name": "Bool stock", "price": 1, "stock": True},
    ],
)
def test_deserialize_product_rejects_malformed_records(raw):
    """Malformed product records should raise StorageError."""

    with pytest.raises(data_manager.StorageError):
        data_manager.deserialize_product(raw)


def test_sale_serialization_keeps_lines_in_order():
    """A sale should carry its lines and snapshot fields through conversion."""

    sale = data_manager.SaleRow(
        sale_id="s-1",
        user_id=None,
        timestamp_iso="2026-01-01T00:00:00.000Z",
        items=(
            data_manager.SaleLineRow(2, "B", 1, Decimal("1.10"), Decimal("1.10")),
            data_manager.SaleLineRow(1, "A", 3, Decimal("0.50"), Decimal("1.50")),
        ),
        total=Decimal("2.60"),
    )

    raw = data_manager.serialize_sale(sale)

    assert raw["userId"] is None
    assert [line["productId"] for line in raw["items"]] == [2, 1]
    assert raw["items"][1] == {
        "productId": 1,
        "productName": "A",
        "quantity": 3,
        "unitPrice": 0.5,
        "subtotal": 1.5,
    }
    assert data_manager.deserialize_sale(raw) == sale


def test_deserialize_sale_rejects_missing_items():
    """A sale without an items array is malformed."""

    with pytest.raises(data_manager.StorageError):
        data_manager.deserialize_sale({"id": "x", "timestamp": "t", "total": 0, "items": "nope"})


def test_deserialize_product_accepts_integral_floats():
    """Whole-number floats on disk are read back as integers."""

    row = data_manager.deserialize_product({"id": 2.0, "name": "Tea", "price": 1, "stock": 3.0})
    assert (row.product_id, row.stock) == (2, 3)


def test_deserialize_sale_line_rejects_fractional_quantity():
    """Sale lines must carry whole quantities."""

    raw = {"productId": 1, "productName": "A", "quantity": 0.5, "unitPrice": 1, "subtotal": 0.5}
    with pytest.raises(data_manager.StorageError):
        data_manager.deserialize_sale_line(raw)
