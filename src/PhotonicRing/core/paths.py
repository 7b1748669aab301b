"""Source resolution and output path helpers."""

import os
from pathlib import Path, PurePosixPath

RES_PREFIX = "res://"


def _normalize_rel_asset_path(input_rel_path: str) -> Path:
    """Normalize a project-relative path to a canonical, traversal-free form."""
    raw = str(input_rel_path).replace("\\", "/")
    p = PurePosixPath(raw)
    if p.is_absolute():
        raise ValueError(f"Resource path must be relative, got absolute path: {input_rel_path}")

    parts = []
    for part in p.parts:
        if part in ("", "."):
            continue
        if part == "..":
            if parts:
                parts.pop()
            else:
                raise ValueError(
                    f"Resource path escapes project root via '..': {input_rel_path}"
                )
            continue
        parts.append(part)

    if not parts:
        raise ValueError(f"Resource path is empty after normalization: {input_rel_path}")
    return Path(*parts)


def resolve_resource_path(path: str, project_root: str = "") -> str:
    """Resolve ``res://`` paths against ``project_root`` (cwd when empty).

    Plain filesystem paths are returned unchanged.
    """
    if not path:
        return path
    text = str(path)
    if not text.startswith(RES_PREFIX):
        return text
    rel = _normalize_rel_asset_path(text[len(RES_PREFIX):])
    root = project_root or os.getcwd()
    return os.path.join(root, str(rel))


def get_output_path(source_path: str, output_dir: str = "",
                    suffix: str = "", ext: str = None) -> str:
    """Return ``<dir>/<stem><suffix><ext>`` for a derived map.

    The directory defaults to the source file's own directory.
    """
    p = Path(source_path)
    extension = ext or p.suffix
    directory = output_dir or str(p.parent)
    return os.path.join(directory, p.stem + suffix + extension)
