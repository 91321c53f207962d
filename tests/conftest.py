"""Shared pytest fixtures and utilities for catalog ledger tests."""

from __future__ import annotations

import argparse
import copy
import json
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, Sequence

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from catalog_ledger import cli, constants, core_logic, data_manager, setup_store  # noqa: E402
from catalog_ledger.web import create_app  # noqa: E402


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    products_path: Path
    sales_path: Path


class MemoryStore:
    """In-memory :class:`data_manager.Store` that records every save."""

    def __init__(self, products: Sequence[Mapping[str, Any]] = (), sales: Sequence[Mapping[str, Any]] = ()) -> None:
        self.documents: dict[str, list[dict[str, Any]]] = {
            constants.Collection.PRODUCTS.value: [dict(p) for p in products],
            constants.Collection.SALES.value: [dict(s) for s in sales],
        }
        self.saves: list[str] = []

    def load(self, collection: Any) -> list[dict[str, Any]]:
        return copy.deepcopy(self.documents[constants.Collection(collection).value])

    def save(self, collection: Any, records: Sequence[Mapping[str, Any]]) -> None:
        key = constants.Collection(collection).value
        self.saves.append(key)
        self.documents[key] = copy.deepcopy([dict(r) for r in records])


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/document bundles on demand."""

    def _create_config(*, serialize_writes: bool = False, initialize: bool = True) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        config_path = setup_store.write_config(
            bundle_dir / "config.ini",
            data_dir="data",
            serialize_writes=serialize_writes,
        )
        if initialize:
            setup_store.run_from_config(config_path)
        data_dir = bundle_dir / "data"
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            products_path=(data_dir / constants.DEFAULT_PRODUCTS_FILE).resolve(),
            sales_path=(data_dir / constants.DEFAULT_SALES_FILE).resolve(),
        )

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    """Return a bundle with freshly initialized empty documents."""

    return config_factory()


@pytest.fixture
def config_file(config_bundle: ConfigBundle) -> Path:
    """Convenience fixture returning only the config path."""

    return config_bundle.config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    return core_logic.load_runtime_context(config_file)


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default settings pointing into a temporary directory."""

    return data_manager.ConfigSettings(
        data_dir=tmp_path,
        products_file=tmp_path / constants.DEFAULT_PRODUCTS_FILE,
        sales_file=tmp_path / constants.DEFAULT_SALES_FILE,
    )


@pytest.fixture
def memory_store() -> MemoryStore:
    """Return an empty in-memory store."""

    return MemoryStore()


@pytest.fixture
def context(settings: data_manager.ConfigSettings, memory_store: MemoryStore) -> core_logic.RuntimeContext:
    """Assemble a runtime context around the in-memory store."""

    return core_logic.build_runtime_context(settings, store=memory_store)


@pytest.fixture
def app(runtime_context: core_logic.RuntimeContext):
    """Flask application backed by temporary JSON documents."""

    application = create_app(runtime_context)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    """Create test client."""

    return app.test_client()


@pytest.fixture
def read_document() -> Callable[[Path], Any]:
    """Return a helper that parses a JSON document from disk."""

    def _read(path: Path) -> Any:
        return json.loads(path.read_text(encoding="utf-8"))

    return _read


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="catalog-ledger", description="Catalog ledger CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
