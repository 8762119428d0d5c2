"""Prompt catalog: a JSON tree of ``string.Template`` prompts.

Keys are dotted paths (``synthesizer.dossier_user``). An entry is either a
string or a list of lines. The catalog is re-read when the file changes.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"

_cache: dict[str, Any] = {"mtime_ns": None, "catalog": None}


def _catalog() -> dict[str, Any]:
    mtime_ns = PROMPTS_PATH.stat().st_mtime_ns
    if _cache["catalog"] is None or _cache["mtime_ns"] != mtime_ns:
        payload = json.loads(PROMPTS_PATH.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"Prompt catalog {PROMPTS_PATH} must be a JSON object.")
        _cache.update(mtime_ns=mtime_ns, catalog=payload)
    return _cache["catalog"]


def get_template(key: str) -> Template:
    node: Any = _catalog()
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"Prompt key not found: {key}")
        node = node[part]
    if isinstance(node, list) and all(isinstance(line, str) for line in node):
        node = "\n".join(node)
    if not isinstance(node, str):
        raise TypeError(f"Prompt key must map to a string or a list of lines: {key}")
    return Template(node)


def render_prompt(key: str, **values: Any) -> str:
    template = get_template(key)
    missing = [name for name in template.get_identifiers() if name not in values]
    if missing:
        raise KeyError(f"Missing template values {missing} for prompt '{key}'")
    return template.substitute(**values)


def clear_prompt_cache() -> None:
    _cache.update(mtime_ns=None, catalog=None)
