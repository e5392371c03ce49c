from dataclasses import dataclass
from pathlib import Path

import pytest

from nicop.render import (
    RenderError,
    Renderer,
    TemplatingData,
    image_path,
    indent,
    nindent,
    nindent_prefix,
)


@dataclass
class TemplateValues:
    foo: str
    bar: str
    baz: str


YAML_TEMPLATE = """kind: TestObj{n}
metadata:
  name: {{{{ foo }}}}
spec:
  attribute: {{{{ bar }}}}
  anotherAttribute: {{{{ baz }}}}
"""

JSON_TEMPLATE = (
    '{{"kind": "TestObj{n}", "metadata": {{"name": "{{{{ foo }}}}"}}, '
    '"spec": {{"attribute": "{{{{ bar }}}}", "anotherAttribute": "{{{{ baz }}}}"}}}}\n'
)


@pytest.fixture
def data():
    return TemplatingData(data=TemplateValues("foo", "bar", "baz"))


def _files(directory: Path):
    return sorted(
        str(p) for p in directory.iterdir() if p.suffix.lstrip(".") in ("json", "yaml", "yml")
    )


def _write(directory: Path, name: str, text: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(text)
    return path


def _check_rendered(objs, values: TemplateValues):
    for idx, obj in enumerate(objs):
        assert obj["kind"] == f"TestObj{idx + 1}"
        assert obj["metadata"]["name"] == values.foo
        assert obj["spec"]["attribute"] == values.bar
        assert obj["spec"]["anotherAttribute"] == values.baz


def test_render_without_files(data):
    assert Renderer([]).render_objects(data) == []


def test_render_non_existent_file(tmp_path, data):
    with pytest.raises(RenderError, match="failed to read manifest file"):
        Renderer([tmp_path / "doesNotExist.yaml"]).render_objects(data)


@pytest.mark.parametrize(
    "content, message",
    [
        ("kind: Foo\nname: {{ foo\n", "failed to parse"),
        ("kind: [unclosed\n", "failed to unmarshal"),
        ("- a\n- b\n", "failed to unmarshal"),
        ('{"kind": "Foo", ', "failed to unmarshal"),
    ],
)
def test_render_malformed_files(tmp_path, data, content, message):
    path = _write(tmp_path, "bad.yaml", content)
    with pytest.raises(RenderError, match=message):
        Renderer([path]).render_objects(data)


def test_render_with_invalid_template_data(tmp_path, data):
    path = _write(tmp_path / "invalid", "a.yaml", "kind: Foo\nname: {{ missing }}\n")
    with pytest.raises(RenderError, match="failed to render manifest"):
        Renderer(_files(tmp_path / "invalid")).render_objects(data)


def test_render_valid_manifests_in_order(tmp_path, data):
    directory = tmp_path / "manifests"
    for n in (3, 1, 2):
        _write(directory, f"0{n}-obj.yaml", YAML_TEMPLATE.format(n=n))
    objs = Renderer(_files(directory)).render_objects(data)
    assert len(objs) == 3
    _check_rendered(objs, data.data)


def test_render_mixed_suffixes(tmp_path, data):
    directory = tmp_path / "mixedManifests"
    _write(directory, "1-obj.json", JSON_TEMPLATE.format(n=1))
    _write(directory, "2-obj.yaml", YAML_TEMPLATE.format(n=2))
    _write(directory, "3-obj.yml", YAML_TEMPLATE.format(n=3))
    objs = Renderer(_files(directory)).render_objects(data)
    assert len(objs) == 3
    _check_rendered(objs, data.data)


def test_multiple_documents_and_empty_kind_skipped(tmp_path, data):
    text = (
        YAML_TEMPLATE.format(n=1)
        + "---\n"
        + "metadata:\n  name: nokind\n"
        + "---\n"
        + YAML_TEMPLATE.format(n=2)
    )
    path = _write(tmp_path, "multi.yaml", text)
    objs = Renderer([path]).render_objects(data)
    assert [o["kind"] for o in objs] == ["TestObj1", "TestObj2"]


def test_whitespace_only_file(tmp_path, data):
    path = _write(tmp_path, "empty.yaml", "{% if false %}kind: X{% endif %}\n   \n")
    assert Renderer([path]).render_objects(data) == []


def test_mapping_data_and_custom_funcs(tmp_path):
    path = _write(tmp_path, "a.yaml", "kind: {{ shout(kind) }}\nmetadata:\n  name: {{ name }}\n")
    td = TemplatingData(data={"kind": "obj", "name": "n1"}, funcs={"shout": str.upper})
    objs = Renderer([path]).render_objects(td)
    assert objs == [{"kind": "OBJ", "metadata": {"name": "n1"}}]


def test_builtin_funcs_in_templates(tmp_path):
    text = (
        "kind: Thing\n"
        "image: {{ imagePath(repo, image, version) }}\n"
        "name: {{ quote(name) }}\n"
        "prefixed: {{ hasPrefix(version, 'sha256:') }}\n"
        "spec:{{ nindent(2, yaml(spec)) }}\n"
    )
    path = _write(tmp_path, "a.yaml", text)
    spec = {"a": 1, "b": [1, 2]}
    td = TemplatingData(
        data={
            "repo": "myrepo",
            "image": "myimage",
            "version": "sha256:1699d23027ea30c9fa",
            "name": "a: b",
            "spec": spec,
        }
    )
    (obj,) = Renderer([path]).render_objects(td)
    assert obj["image"] == "myrepo/myimage@sha256:1699d23027ea30c9fa"
    assert obj["name"] == "a: b"
    assert obj["prefixed"] is True
    assert obj["spec"] == spec


def test_image_path():
    assert image_path("myrepo", "myimage", "myversion") == "myrepo/myimage:myversion"
    assert (
        image_path("myrepo", "myimage", "sha256:1699d23027ea30c9fa")
        == "myrepo/myimage@sha256:1699d23027ea30c9fa"
    )


def test_indent_helpers():
    assert indent(2, "a\nb") == "  a\n  b"
    assert nindent(2, "a\nb") == "\n  a\n  b"
    assert nindent_prefix(4, "- ", "a: 1\nb: 2") == "\n  - a: 1\n    b: 2"
    assert nindent_prefix(2, "", "a") == nindent(2, "a")