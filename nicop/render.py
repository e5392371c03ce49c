"""Render Kubernetes objects from template manifest files.

Each file is a Jinja2 template holding one or more YAML documents, or a
stream of JSON objects. Rendering yields the objects as plain mappings, in
the order of the files and of the documents within each file.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import asdict, dataclass, fields, is_dataclass
from pathlib import Path
from typing import Any

import jinja2
import yaml

MANIFEST_FILE_SUFFIXES = ("yaml", "yml", "json")


class RenderError(Exception):
    """Raised when a manifest file cannot be read, parsed, rendered or decoded."""


@dataclass
class TemplatingData:
    """Data for the templating engine and extra functions to offer templates."""

    data: Any = None
    funcs: Mapping[str, Callable[..., Any]] | None = None


def indent(spaces: int, text: str) -> str:
    """Indent every line of the text by the given number of spaces."""
    pad = " " * spaces
    return pad + text.replace("\n", "\n" + pad)


def nindent(spaces: int, text: str) -> str:
    """Like indent, with a newline in front."""
    return "\n" + indent(spaces, text)


def nindent_prefix(spaces: int, prefix: str, text: str) -> str:
    """Indent the text with a prefix placed to the left of the first line's indentation."""
    return nindent(spaces, prefix + text).replace(" ", "", len(prefix))


def image_path(repository: str, image: str, version: str) -> str:
    """Return a container image path, using '@' for sha256 digests."""
    if version.startswith("sha256:"):
        return f"{repository}/{image}@{version}"
    return f"{repository}/{image}:{version}"


def _to_yaml(obj: Any) -> str:
    if is_dataclass(obj) and not isinstance(obj, type):
        obj = asdict(obj)
    return yaml.safe_dump(obj, default_flow_style=False, sort_keys=True)


def _quote(obj: Any) -> str:
    return json.dumps(obj if isinstance(obj, str) else str(obj))


_BUILTIN_FUNCS: dict[str, Callable[..., Any]] = {
    "yaml": _to_yaml,
    "quote": _quote,
    "indent": indent,
    "nindent": nindent,
    "nindentPrefix": nindent_prefix,
    "hasPrefix": lambda text, prefix: text.startswith(prefix),
    "imagePath": image_path,
}


def _template_context(data: Any) -> dict[str, Any]:
    if data is None:
        return {}
    if isinstance(data, Mapping):
        return dict(data)
    if is_dataclass(data) and not isinstance(data, type):
        return {f.name: getattr(data, f.name) for f in fields(data)}
    if hasattr(data, "__dict__"):
        return dict(vars(data))
    raise RenderError("template data must be a mapping or an object with attributes")


def _json_stream(text: str) -> Iterator[Any]:
    decoder = json.JSONDecoder()
    pos = 0
    while True:
        while pos < len(text) and text[pos].isspace():
            pos += 1
        if pos >= len(text):
            return
        obj, pos = decoder.raw_decode(text, pos)
        yield obj


class Renderer:
    """Renders Kubernetes objects from a fixed list of template files."""

    def __init__(self, files: Iterable[str | Path]) -> None:
        self.files = [Path(f) for f in files]

    def render_objects(self, data: TemplatingData) -> list[dict[str, Any]]:
        """Render every file with the given data and return all objects found."""
        objects: list[dict[str, Any]] = []
        for file_path in self.files:
            objects.extend(self._render_file(file_path, data))
        return objects

    def _render_file(self, file_path: Path, data: TemplatingData) -> list[dict[str, Any]]:
        try:
            text = file_path.read_text(encoding="utf-8")
        except (OSError, ValueError) as err:
            raise RenderError(f"failed to read manifest file {file_path}: {err}") from err

        env = jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        env.globals.update(_BUILTIN_FUNCS)
        if data.funcs:
            env.globals.update(data.funcs)

        try:
            template = env.from_string(text)
        except jinja2.TemplateSyntaxError as err:
            raise RenderError(f"failed to parse manifest file {file_path}: {err}") from err

        context = _template_context(data.data)
        try:
            rendered = template.render(context)
        except Exception as err:
            raise RenderError(f"failed to render manifest {file_path}: {err}") from err

        if not rendered.strip():
            return []
        return list(self._decode(rendered, file_path))

    @staticmethod
    def _decode(rendered: str, file_path: Path) -> Iterator[dict[str, Any]]:
        documents: Iterable[Any]
        if rendered.lstrip().startswith("{"):
            documents = _json_stream(rendered)
        else:
            documents = yaml.safe_load_all(rendered)
        try:
            for doc in documents:
                if doc is None:
                    continue
                if not isinstance(doc, dict):
                    raise RenderError(
                        f"failed to unmarshal manifest {file_path}: document is not a mapping"
                    )
                kind = doc.get("kind")
                if not isinstance(kind, str) or not kind:
                    continue
                yield doc
        except (yaml.YAMLError, json.JSONDecodeError) as err:
            raise RenderError(f"failed to unmarshal manifest {file_path}: {err}") from err