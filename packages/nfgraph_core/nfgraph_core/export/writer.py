"""nfgraph_core.export.writer

Atomic export: write a compiled artifact to a directory.

The artifact is written into a staging directory beside ``out_dir`` and
renamed into place once complete. An existing ``out_dir`` is moved aside
first and removed only after the rename succeeded, so at every moment
``out_dir`` is either the old export, absent, or the complete new one.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from nfgraph_core.api.errors import ExportError, NFGraphError

logger = logging.getLogger(__name__)


def _write_tree(artifact, staging: Path) -> None:
    entry = staging / artifact.entry_point
    with open(entry, "w", encoding="utf-8", newline="\n") as f:
        f.write(artifact.script)
    entry.chmod(0o755)
    for rel, content in artifact.files.items():
        target = staging / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)


def write_export(artifact, out_dir: Path) -> Path:
    """Write ``artifact`` (an ``ExportArtifact``) to ``out_dir`` atomically.

    Raises ExportError if the directory cannot be written; ``out_dir`` is
    then left as it was.
    """
    out_dir = Path(out_dir).absolute()
    parent = out_dir.parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{out_dir.name}.", dir=parent))
    except OSError as exc:
        raise ExportError(None, f"cannot create staging directory in {parent}: {exc}") from exc

    backup = None
    try:
        _write_tree(artifact, staging)
        staging.chmod(0o755)
        if out_dir.exists():
            if not out_dir.is_dir():
                raise ExportError(None, f"{out_dir} exists and is not a directory")
            backup = parent / f"{staging.name}.old"
            os.replace(out_dir, backup)
        os.replace(staging, out_dir)
    except BaseException as exc:
        shutil.rmtree(staging, ignore_errors=True)
        if backup is not None and not out_dir.exists():
            os.replace(backup, out_dir)
        if isinstance(exc, NFGraphError) or not isinstance(exc, Exception):
            raise
        raise ExportError(None, f"cannot write export to {out_dir}: {exc}") from exc

    if backup is not None:
        shutil.rmtree(backup, ignore_errors=True)
    logger.info(f"Exported {len(artifact.files)} data files and {artifact.entry_point} to {out_dir}")
    return out_dir
