"""nfgraph_core.core.settings

Compiler settings, loaded from an optional YAML file.

The CLI reads the file named by ``--config`` or, failing that, by the
``NFGRAPH_CONFIG`` environment variable.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nfgraph_core.api.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV = "NFGRAPH_CONFIG"


class CompilerSettings(BaseModel):
    """Knobs of the generated configuration.

    Attributes
    ----------
    table_name : str
        nft table owning every generated chain.
    table_family : str
        nft family of that table.
    nft_binary : str
        Default ``nft`` executable; ``$NFT`` overrides it at run time.
    entry_point : str
        File name of the generated script.
    data_dir : str
        Directory, next to the entry point, holding per-node data files.
    base_hook : str
        Netfilter hook of the ``source`` base chain.
    base_priority : int
        Priority of that base chain. The default runs before the NAT
        chains (-100 on prerouting) so the marks set by NAT nodes are seen.
    extension_paths : list[str]
        Directories searched for extension bundles.
    log_level : str
        Logging level used by the CLI unless ``--verbose`` is given.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    table_name: str = Field(default="nfgraph", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    table_family: Literal["inet", "ip", "ip6"] = "inet"
    nft_binary: str = "nft"
    entry_point: str = Field(default="apply.sh", pattern=r"^[^/]+$")
    data_dir: str = Field(default="data", pattern=r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")
    base_hook: Literal["prerouting", "input", "forward", "output", "postrouting"] = "prerouting"
    base_priority: int = -150
    extension_paths: List[str] = Field(default_factory=list)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"


def load_settings(path: Optional[os.PathLike] = None) -> CompilerSettings:
    """Read settings from ``path``; a missing file yields the defaults.

    Relative ``extension_paths`` are resolved against the file's directory.
    """
    if path is None:
        return CompilerSettings()
    path = Path(path)
    if not path.exists():
        logger.debug(f"Settings file {path} not found, using defaults")
        return CompilerSettings()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read settings file {path}: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Settings file {path} must contain a mapping")
    try:
        settings = CompilerSettings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid settings in {path}: {exc}") from exc
    settings.extension_paths = [
        str((path.parent / p).resolve()) if not os.path.isabs(p) else p
        for p in settings.extension_paths
    ]
    return settings


def settings_path_from_env() -> Optional[Path]:
    value = os.environ.get(CONFIG_ENV, "").strip()
    return Path(value) if value else None
