"""
Import-boundary enforcement.

1. Engine purity      -- procure_engines/** may not import DB, ORM, models,
                         services, modules or config layers.
2. Engine no-impure   -- procure_engines/** may not read the wall clock or
                         the environment.
3. Kernel isolation   -- procure_kernel/** may not import the layers above it
                         at module level.
4. Config centralisation -- only procure_config reads configuration files or
                         environment variables.

All scanning is done via AST; these tests are read-only.
"""

import ast
import glob
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[str]:
    return sorted(glob.glob(f"{ROOT / package}/**/*.py", recursive=True))


def _parse(filepath: str) -> ast.Module:
    return ast.parse(Path(filepath).read_text(), filename=filepath)


def _imports(nodes) -> list[tuple[int, str]]:
    results: list[tuple[int, str]] = []
    for node in nodes:
        if isinstance(node, ast.Import):
            results.extend((node.lineno, alias.name) for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _attribute_refs(tree: ast.Module) -> list[tuple[int, str]]:
    return [
        (node.lineno, f"{node.value.id}.{node.attr}")
        for node in ast.walk(tree)
        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name)
    ]


class TestEnginePurity:

    FORBIDDEN_PREFIXES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "procure_kernel.models",
        "procure_kernel.db",
        "procure_kernel.services",
        "procure_kernel.selectors",
        "procure_services",
        "procure_modules",
        "procure_config",
    )

    def test_engine_files_have_no_forbidden_imports(self):
        violations = [
            f"  {path}:{lineno} imports '{module}'"
            for path in _python_files("procure_engines")
            for lineno, module in _imports(ast.walk(_parse(path)))
            if _matches_any(module, self.FORBIDDEN_PREFIXES)
        ]

        assert not violations, "Engine purity violation:\n" + "\n".join(violations)


class TestEngineNoImpureFunctions:

    FORBIDDEN_CALLS = frozenset({
        "datetime.now",
        "datetime.utcnow",
        "date.today",
        "time.time",
        "os.environ",
        "os.getenv",
    })

    def test_engines_never_read_clock_or_environment(self):
        violations = [
            f"  {path}:{lineno} uses {ref}"
            for path in _python_files("procure_engines")
            for lineno, ref in _attribute_refs(_parse(path))
            if ref in self.FORBIDDEN_CALLS
        ]

        assert not violations, "Impure engine call:\n" + "\n".join(violations)


class TestKernelIsolation:
    """Module-level imports only; the table-creation hook loads ORM models lazily."""

    FORBIDDEN_PREFIXES = ("procure_engines", "procure_modules", "procure_services", "procure_config")

    def test_kernel_does_not_import_upper_layers(self):
        violations = [
            f"  {path}:{lineno} imports '{module}'"
            for path in _python_files("procure_kernel")
            for lineno, module in _imports(_parse(path).body)
            if _matches_any(module, self.FORBIDDEN_PREFIXES)
        ]

        assert not violations, "Kernel boundary violation:\n" + "\n".join(violations)


class TestConfigCentralisation:

    ALLOWED = ("procure_config",)

    def test_only_config_reads_environment(self):
        violations = []
        for package in ("procure_kernel", "procure_engines", "procure_modules", "procure_services"):
            for path in _python_files(package):
                tree = _parse(path)
                for lineno, ref in _attribute_refs(tree):
                    if ref in ("os.environ", "os.getenv"):
                        violations.append(f"  {path}:{lineno} uses {ref}")
                for lineno, module in _imports(ast.walk(tree)):
                    if module == "yaml":
                        violations.append(f"  {path}:{lineno} imports yaml")

        assert not violations, "Configuration read outside procure_config:\n" + "\n".join(violations)
