"""Structural tests for route code.

Verifies that routes follow the service/route separation rule:
- Routes may not contain domain logic or raw DB access
- Routes may only import from allowed modules
- Every route module defines a router
"""

import ast
from pathlib import Path

import pytest


def get_routes_dir() -> Path:
    """Get the path to the routes directory."""
    return Path(__file__).parent.parent / "donateconnect" / "api" / "routes"


def get_all_route_files() -> list[Path]:
    """Get all Python files in the routes directory."""
    routes_dir = get_routes_dir()
    if not routes_dir.exists():
        return []
    return [f for f in routes_dir.iterdir() if f.suffix == ".py" and f.name != "__init__.py"]


def _imported_modules(tree: ast.AST) -> list[str]:
    modules = []
    for node in ast.walk(tree):
        if isinstance(node, ast.ImportFrom) and node.module:
            modules.append(node.module)
        elif isinstance(node, ast.Import):
            modules.extend(alias.name for alias in node.names)
    return modules


class TestForbiddenImports:
    """Tests that route files don't import forbidden modules."""

    ALLOWED_MODULES = [
        "fastapi",
        "typing",
        "uuid",
        "sqlalchemy.orm",  # Only for Session type annotation
        "donateconnect.api.deps",
        "donateconnect.auth",
        "donateconnect.config",
        "donateconnect.errors",
        "donateconnect.logging",
        "donateconnect.realtime",
        "donateconnect.responses",
        "donateconnect.schemas",
        "donateconnect.services",
    ]

    @pytest.fixture
    def route_files(self) -> list[Path]:
        files = get_all_route_files()
        assert len(files) > 0, "No route files found to test"
        return files

    def test_only_allowed_imports(self, route_files: list[Path]):
        for route_file in route_files:
            tree = ast.parse(route_file.read_text())
            for module in _imported_modules(tree):
                assert any(
                    module == allowed or module.startswith(f"{allowed}.")
                    for allowed in self.ALLOWED_MODULES
                ), f"{route_file.name}: import of '{module}' is not allowed in routes"

    def test_no_db_models_or_engine(self, route_files: list[Path]):
        """Routes reach the database only through services."""
        for route_file in route_files:
            tree = ast.parse(route_file.read_text())
            for module in _imported_modules(tree):
                assert not module.startswith("donateconnect.db"), (
                    f"{route_file.name}: routes must not import from donateconnect.db"
                )

    def test_no_raw_db_operations_in_routes(self, route_files: list[Path]):
        """Route files must not call db.execute, db.scalar, etc."""
        for route_file in route_files:
            tree = ast.parse(route_file.read_text())
            for node in ast.walk(tree):
                if not (isinstance(node, ast.Call) and isinstance(node.func, ast.Attribute)):
                    continue
                if node.func.attr not in ("execute", "scalar", "query", "add", "commit"):
                    continue
                if isinstance(node.func.value, ast.Name) and node.func.value.id in (
                    "db",
                    "session",
                ):
                    pytest.fail(
                        f"{route_file.name}: Forbidden call "
                        f"'{node.func.value.id}.{node.func.attr}()'. "
                        "Route files must not perform raw DB operations."
                    )


class TestRouteFileStructure:
    """Tests for overall route file structure."""

    def test_all_routes_have_router(self):
        """All route files must define a 'router' object."""
        for route_file in get_all_route_files():
            tree = ast.parse(route_file.read_text())
            has_router = any(
                isinstance(node, ast.Assign)
                and any(isinstance(t, ast.Name) and t.id == "router" for t in node.targets)
                for node in ast.walk(tree)
            )

            assert has_router, f"{route_file.name} must define a 'router' object"

    def test_all_routers_are_mounted(self):
        init_source = (get_routes_dir() / "__init__.py").read_text()

        for route_file in get_all_route_files():
            assert f"donateconnect.api.routes.{route_file.stem} import" in init_source, (
                f"{route_file.name} is not included in the API router"
            )
