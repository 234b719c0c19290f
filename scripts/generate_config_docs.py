"""Autogenerate config documentation.

Scans Pydantic schema classes in core.config.schemas.* and emits a Markdown
summary table to docs/Generated-Config.md.
"""
from __future__ import annotations

import importlib
import inspect
import sys
from pathlib import Path

# Ensure root on sys.path before importing project modules
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pydantic import BaseModel  # noqa: E402

SCHEMA_MODULES = [
    "core.config.schemas.messaging",
    "core.config.schemas.observability",
]

OUTPUT_PATH = Path("docs/Generated-Config.md")


def iter_models():
    for mod_name in SCHEMA_MODULES:
        mod = importlib.import_module(mod_name)
        for name, obj in inspect.getmembers(mod, inspect.isclass):
            if issubclass(obj, BaseModel) and obj.__module__ == mod_name:
                yield mod_name, name, obj


def model_fields(cls: type[BaseModel]):
    for fname, field in cls.model_fields.items():
        ftype = field.annotation
        if field.default_factory is not None:
            default = field.default_factory()
        elif field.is_required():
            default = "(required)"
        elif isinstance(field.default, BaseModel):
            default = f"({type(field.default).__name__})"
        else:
            default = field.default
        yield fname, ftype, default, field.description or ""


def generate() -> str:
    lines = [
        "# Generated Config Schemas",
        "",
        "Autogenerated from the Pydantic models; do not edit by hand.",
    ]
    for mod_name, name, cls in iter_models():
        lines.append(f"\n## {name} ({mod_name.split('.')[-1]})\n")
        lines.append("| Field | Type | Default | Notes |")
        lines.append("|-------|------|---------|-------|")
        for fname, ftype, default, note in model_fields(cls):
            type_name = getattr(ftype, "__name__", str(ftype))
            lines.append(
                f"| {fname} | {type_name} | {default} | {note} |"
            )
    return "\n".join(lines) + "\n"


def main():
    content = generate()
    OUTPUT_PATH.parent.mkdir(parents=True, exist_ok=True)
    OUTPUT_PATH.write_text(content, encoding="utf-8")
    print(f"[config-doc] written {OUTPUT_PATH}")


if __name__ == "__main__":  # pragma: no cover
    main()
