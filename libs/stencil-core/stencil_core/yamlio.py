"""YAML reading/writing shared by the config loader and the lock store."""

from io import StringIO
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

# Round-trip parser; keeps quoting in documents we rewrite
yaml = YAML()
yaml.preserve_quotes = True
yaml.default_flow_style = False
yaml.width = 4096  # Avoid line wrapping


def load_yaml(text: str | bytes) -> Any:
    """Parse one YAML document. Raises ruamel.yaml.error.YAMLError."""
    if isinstance(text, bytes):
        text = text.decode("utf-8")
    return yaml.load(text)


def dump_yaml(data: Any) -> str:
    stream = StringIO()
    yaml.dump(data, stream)
    return stream.getvalue()


def write_text_atomic(path: Path, content: str) -> None:
    """Write via a sibling temp file, then rename over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.parent / f".{path.name}.stenciltmp"
    try:
        temp_path.write_text(content, encoding="utf-8")
        temp_path.replace(path)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise
