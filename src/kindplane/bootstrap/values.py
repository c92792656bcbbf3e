"""Chart values merging.

Values are plain YAML-shaped trees: dicts with string keys whose leaves are
scalars or lists. Merging is deterministic; later sources win and two dicts
at the same path merge recursively. Lists are treated as scalars and replaced
wholesale.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import yaml

from ..errors import MalformedOverrideError, ValidationError

ValueTree = dict[str, Any]


def _merge_into(dst: ValueTree, src: Mapping[str, Any]) -> ValueTree:
    for key, src_val in src.items():
        dst_val = dst.get(key)
        if isinstance(dst_val, dict) and isinstance(src_val, Mapping):
            dst[key] = _merge_into(dst_val, src_val)
        else:
            dst[key] = copy.deepcopy(src_val)
    return dst


def merge_values(*sources: Mapping[str, Any] | None) -> ValueTree:
    """Merge value trees left to right.

    ``None`` entries are ignored. Inputs are never mutated; the result shares
    no structure with them.

    Args:
        *sources: Value trees in increasing order of precedence

    Returns:
        A new merged value tree
    """
    result: ValueTree = {}
    for source in sources:
        if source:
            _merge_into(result, source)
    return result


def split_key(key: str) -> list[str]:
    """Split a dotted override key into path segments.

    A backslash escapes the next character, so ``a\\.b`` is the single
    segment ``a.b``. Empty segments are dropped.
    """
    parts: list[str] = []
    current: list[str] = []
    escaped = False

    for char in key:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ".":
            if current:
                parts.append("".join(current))
                current = []
        else:
            current.append(char)

    if current:
        parts.append("".join(current))
    return parts


def parse_overrides(pairs: Iterable[str]) -> ValueTree:
    """Parse ``key=value`` overrides into a value tree.

    Values are kept as strings. Only the first ``=`` separates key from value.

    Raises:
        MalformedOverrideError: A pair has no ``=``, an empty key, or would
            nest under a path already holding a scalar.
    """
    result: ValueTree = {}

    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise MalformedOverrideError(pair, "expected key=value")

        segments = split_key(key)
        if not segments:
            raise MalformedOverrideError(pair, "empty key")

        current = result
        for segment in segments[:-1]:
            nested = current.setdefault(segment, {})
            if not isinstance(nested, dict):
                raise MalformedOverrideError(pair, f"{segment!r} is already set to a scalar")
            current = nested
        current[segments[-1]] = value

    return result


def load_values_file(path: str | Path) -> ValueTree:
    """Load a YAML values file.

    An empty file yields an empty tree.

    Raises:
        ValidationError: The file is missing, unparsable or not a mapping.
    """
    path = Path(path)
    try:
        content = path.read_text()
    except OSError as e:
        raise ValidationError(f"failed to read values file {path}: {e}") from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValidationError(f"failed to parse values file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(f"values file {path} must contain a mapping")
    return data


def resolve_values(
    values_files: Iterable[str | Path] = (),
    inline: Mapping[str, Any] | None = None,
    overrides: Iterable[str] = (),
    base_dir: Path | None = None,
) -> ValueTree:
    """Resolve the final values for a chart install.

    Precedence, lowest first: values files in order, inline values,
    ``key=value`` overrides. Relative file paths resolve against ``base_dir``.
    """
    sources: list[Mapping[str, Any]] = []
    for values_file in values_files:
        path = Path(values_file)
        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        sources.append(load_values_file(path))
    if inline:
        sources.append(inline)
    sources.append(parse_overrides(overrides))
    return merge_values(*sources)
