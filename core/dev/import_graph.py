"""Build import dependency graph for internal modules.

Parses .py files under a package root (default core/) with ``ast`` and
collects edges between project-internal modules (those starting with one
of ``prefixes``). Relative imports are resolved against the importing
module. Used in tests to enforce:
  - No cycles between modules.
  - No forbidden edges (architecture constraints).
"""
from __future__ import annotations

import ast
from pathlib import Path
from typing import Dict, Iterable, List, Set, Tuple


def _module_name(root_path: Path, package: str, py: Path) -> str:
    rel = py.relative_to(root_path).with_suffix("")
    parts = [package, *rel.parts]
    if parts[-1] == "__init__":
        parts.pop()
    return ".".join(parts)


def _resolve_relative(
    module: str, is_package: bool, level: int, target: str | None
) -> str:
    base = module.split(".")
    if not is_package:
        base = base[:-1]
    if level > 1:
        base = base[: len(base) - (level - 1)]
    return ".".join(base + ([target] if target else []))


def build_import_graph(
    root: str | Path = "core",
    package: str | None = None,
    prefixes: Iterable[str] = ("core.",),
) -> Dict[str, Set[str]]:
    root_path = Path(root)
    package = package or root_path.name
    prefixes = tuple(prefixes)
    edges: Dict[str, Set[str]] = {}
    for py in root_path.rglob("*.py"):
        if "__pycache__" in py.parts:
            continue
        mod = _module_name(root_path, package, py)
        try:
            tree = ast.parse(py.read_text(encoding="utf-8"))
        except SyntaxError:
            continue
        targets: Set[str] = set()
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                targets.update(n.name for n in node.names)
            elif isinstance(node, ast.ImportFrom):
                if node.level:
                    targets.add(
                        _resolve_relative(
                            mod,
                            py.name == "__init__.py",
                            node.level,
                            node.module,
                        )
                    )
                elif node.module:
                    targets.add(node.module)
        internal = {t for t in targets if t.startswith(prefixes)}
        if internal:
            edges.setdefault(mod, set()).update(internal)
    # Ensure all nodes present
    for n in list(edges.keys()):
        for dst in edges[n]:
            edges.setdefault(dst, set())
    return edges


def detect_cycles(graph: Dict[str, Set[str]]) -> List[List[str]]:
    visited: Set[str] = set()
    stack: Set[str] = set()
    cycles: List[List[str]] = []

    def dfs(node: str, path: List[str]):
        if node in stack:
            # cycle found - slice path
            if node in path:
                idx = path.index(node)
                cycles.append(path[idx:] + [node])
            return
        if node in visited:
            return
        visited.add(node)
        stack.add(node)
        for nxt in sorted(graph.get(node, ())):
            dfs(nxt, path + [nxt])
        stack.remove(node)

    for n in sorted(graph):
        if n not in visited:
            dfs(n, [n])
    return cycles


def forbidden_edges(
    graph: Dict[str, Set[str]], rules: List[Tuple[str, str]]
) -> List[Tuple[str, str]]:
    found: List[Tuple[str, str]] = []
    for src, targets in graph.items():
        for dst in targets:
            for a, b in rules:
                if src.startswith(a) and dst.startswith(b):
                    found.append((src, dst))
    return found


__all__ = [
    "build_import_graph",
    "detect_cycles",
    "forbidden_edges",
]
