"""
Import-boundary enforcement.

1. Domain purity       -- delivery_kernel/domain/** is pure: no ORM, no
                          persistence, no services, no outer layers.
2. Engine purity       -- delivery_engines/** may not import DB drivers,
                          the ORM, kernel models/db/services or config.
3. Engine determinism  -- delivery_engines/** may not read the wall clock
                          or the environment.
4. Kernel isolation    -- delivery_kernel/** never imports the outer
                          packages.
5. Config direction    -- delivery_config/** never imports the command
                          surface.

All scanning is done via AST; these tests are read-only.
"""

import ast
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    """All .py files under *package*, sorted for deterministic order."""
    return sorted((REPO_ROOT / package).rglob("*.py"))


def _parse(path: Path) -> ast.AST:
    return ast.parse(path.read_text(), filename=str(path))


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    """(line_number, module) for every import, including function-level ones."""
    results: list[tuple[int, str]] = []
    for node in ast.walk(_parse(path)):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == prefix or module.startswith(f"{prefix}.") for prefix in prefixes)


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for path in _python_files(package):
        for lineno, module in _extract_imports(path):
            if _matches_any(module, forbidden):
                found.append(f"  {path.relative_to(REPO_ROOT)}:{lineno} imports '{module}'")
    return found


class TestDomainPurity:
    FORBIDDEN_PREFIXES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "delivery_kernel.db",
        "delivery_kernel.models",
        "delivery_kernel.services",
        "delivery_config",
        "delivery_engines",
        "delivery_services",
    )

    def test_domain_files_have_no_forbidden_imports(self):
        violations = _violations("delivery_kernel/domain", self.FORBIDDEN_PREFIXES)
        assert not violations, (
            "Domain purity violation:\n" + "\n".join(violations)
        )


class TestEnginePurity:
    FORBIDDEN_PREFIXES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "delivery_kernel.db",
        "delivery_kernel.models",
        "delivery_kernel.services",
        "delivery_config",
        "delivery_services",
    )

    def test_engine_files_have_no_forbidden_imports(self):
        violations = _violations("delivery_engines", self.FORBIDDEN_PREFIXES)
        assert not violations, (
            "Engine purity violation:\n" + "\n".join(violations)
        )


class TestEngineDeterminism:
    IMPURE_ATTRIBUTES = frozenset({
        "datetime.now",
        "datetime.utcnow",
        "date.today",
        "os.environ",
        "os.getenv",
    })

    def test_engines_read_no_clock_or_environment(self):
        violations = []
        for path in _python_files("delivery_engines"):
            for node in ast.walk(_parse(path)):
                if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name):
                    name = f"{node.value.id}.{node.attr}"
                    if name in self.IMPURE_ATTRIBUTES:
                        violations.append(
                            f"  {path.relative_to(REPO_ROOT)}:{node.lineno} uses {name}"
                        )
        assert not violations, (
            "Engines must be pure functions of their inputs:\n" + "\n".join(violations)
        )


class TestKernelIsolation:
    FORBIDDEN_PREFIXES = ("delivery_config", "delivery_engines", "delivery_services")

    def test_kernel_never_imports_outer_packages(self):
        violations = _violations("delivery_kernel", self.FORBIDDEN_PREFIXES)
        assert not violations, (
            "Kernel boundary violation:\n" + "\n".join(violations)
        )


class TestConfigDirection:
    def test_config_never_imports_command_surface(self):
        violations = _violations("delivery_config", ("delivery_services",))
        assert not violations, (
            "Config must not depend on the command surface:\n" + "\n".join(violations)
        )


class TestScannerSanity:
    def test_packages_are_found(self):
        for package in ("delivery_kernel", "delivery_engines", "delivery_config", "delivery_services"):
            assert _python_files(package), f"no sources found under {package}"
