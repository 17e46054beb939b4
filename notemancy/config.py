"""
Configuration management for notemancy.

The configuration is stored as a TOML file in an explicit configuration
directory. It names the vaults to scan, the indicator segment that marks
where virtual paths begin, and the embedding backend parameters.

Library code never reads environment variables: a KbConfig is loaded
once and passed to the components that need it.
"""

import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w


CONFIG_FILENAME = "notemancy.toml"
CONFIG_VERSION = 1

DEFAULT_CONFIG_DIR = Path.home() / ".notemancy"
DEFAULT_INDICATOR = "notesy"
DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"
DEFAULT_DOCUMENT_EXTENSIONS = ["md", "markdown"]
DEFAULT_ATTACHMENT_EXTENSIONS = ["png", "jpg", "jpeg", "gif", "webp", "svg"]


@dataclass
class VaultConfig:
    """A named set of root paths to scan."""
    name: str
    paths: list[Path] = field(default_factory=list)
    default: bool = False


@dataclass
class IndexTuning:
    """Sizing bounds for partitioned (IVF) approximate indexes."""
    min_partitions: int = 10
    max_partitions: int = 1000
    probe_ratio: float = 0.10
    min_probes: int = 10
    max_probes: int = 100
    min_rows_for_index: int = 256


@dataclass
class EmbeddingConfig:
    """Embedding model and vector backend parameters."""
    backend: str = "lancedb"
    provider: str = "sentence-transformers"
    model: str = DEFAULT_EMBEDDING_MODEL
    dimension: int = 384
    metric: str = "cosine"
    db_dir: str = "embeddings"
    table_prefix: str = "notemancy_"
    batch_size: int = 64

    @property
    def table_name(self) -> str:
        return f"{self.table_prefix}documents"


@dataclass
class SearchConfig:
    """Defaults for lexical and semantic retrieval."""
    similarity_threshold: float = 0.1
    overfetch: float = 1.5
    max_results: int = 20
    snippet_length: int = 200


@dataclass
class ScanConfig:
    """Scanner parameters."""
    workers: int = 0  # 0 lets the executor pick
    document_extensions: list[str] = field(default_factory=lambda: list(DEFAULT_DOCUMENT_EXTENSIONS))
    attachment_extensions: list[str] = field(default_factory=lambda: list(DEFAULT_ATTACHMENT_EXTENSIONS))


@dataclass
class KbConfig:
    """Complete knowledge-base configuration."""
    config_dir: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    indicator: str = DEFAULT_INDICATOR
    vaults: list[VaultConfig] = field(default_factory=list)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    ann: IndexTuning = field(default_factory=IndexTuning)
    search: SearchConfig = field(default_factory=SearchConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)

    @property
    def config_path(self) -> Path:
        return self.config_dir / CONFIG_FILENAME

    @property
    def metadata_db_path(self) -> Path:
        return self.config_dir / "metadata.db"

    @property
    def fulltext_db_path(self) -> Path:
        return self.config_dir / "fulltext.db"

    @property
    def embeddings_path(self) -> Path:
        return self.config_dir / self.embedding.db_dir

    def get_vault(self, name: str) -> Optional[VaultConfig]:
        for vault in self.vaults:
            if vault.name == name:
                return vault
        return None


def resolve_vaults(config: KbConfig) -> list[tuple[str, list[Path]]]:
    """
    Select the vaults to scan.

    Vaults flagged ``default`` win; when none is flagged, every configured
    vault is used.
    """
    selected = [v for v in config.vaults if v.default]
    if not selected:
        selected = list(config.vaults)
    return [(v.name, list(v.paths)) for v in selected]


def create_default_config(config_dir: Path) -> KbConfig:
    """Create a new config with defaults and no vaults."""
    return KbConfig(config_dir=Path(config_dir))


# -----------------------------------------------------------------------------
# TOML parsing
# -----------------------------------------------------------------------------

def _section(data: dict, name: str) -> dict:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ValueError(f"Config section [{name}] must be a table")
    return value


def _build(cls, section: dict, name: str):
    """Instantiate a dataclass from a TOML table, rejecting unknown keys."""
    known = set(cls.__dataclass_fields__)
    unknown = set(section) - known
    if unknown:
        raise ValueError(f"Unknown keys in [{name}]: {sorted(unknown)}")
    try:
        return cls(**section)
    except TypeError as e:
        raise ValueError(f"Invalid [{name}] section: {e}") from e


def _parse_vaults(section: dict) -> list[VaultConfig]:
    vaults = []
    for name, table in section.items():
        if not isinstance(table, dict):
            raise ValueError(f"Vault '{name}' must be a table")
        paths = table.get("paths", [])
        if isinstance(paths, str):
            paths = [paths]
        if not isinstance(paths, list) or not all(isinstance(p, str) for p in paths):
            raise ValueError(f"Vault '{name}': paths must be a list of strings")
        default = table.get("default", False)
        if not isinstance(default, bool):
            raise ValueError(f"Vault '{name}': default must be true or false")
        vaults.append(VaultConfig(
            name=name,
            paths=[Path(p).expanduser() for p in paths],
            default=default,
        ))
    return vaults


def load_config(config_dir: Path) -> KbConfig:
    """
    Load configuration from a config directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_dir = Path(config_dir)
    config_path = config_dir / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    general = _section(data, "general")
    version = general.get("version", 1)
    if not isinstance(version, int) or version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    indicator = general.get("indicator", DEFAULT_INDICATOR)
    if not isinstance(indicator, str) or not indicator or "/" in indicator:
        raise ValueError(f"Invalid indicator: {indicator!r}")

    return KbConfig(
        config_dir=config_dir,
        version=version,
        created=general.get("created", ""),
        indicator=indicator,
        vaults=_parse_vaults(_section(data, "vaults")),
        embedding=_build(EmbeddingConfig, _section(data, "embedding"), "embedding"),
        ann=_build(IndexTuning, _section(data, "ann"), "ann"),
        search=_build(SearchConfig, _section(data, "search"), "search"),
        scan=_build(ScanConfig, _section(data, "scan"), "scan"),
    )


def _as_table(obj) -> dict[str, Any]:
    return {name: getattr(obj, name) for name in obj.__dataclass_fields__}


def save_config(config: KbConfig) -> None:
    """
    Save configuration to the config directory.

    Creates the directory if it doesn't exist.
    """
    config.config_dir.mkdir(parents=True, exist_ok=True)

    data = {
        "general": {
            "version": config.version,
            "created": config.created,
            "indicator": config.indicator,
        },
        "vaults": {
            v.name: {"paths": [str(p) for p in v.paths], "default": v.default}
            for v in config.vaults
        },
        "embedding": _as_table(config.embedding),
        "ann": _as_table(config.ann),
        "search": _as_table(config.search),
        "scan": _as_table(config.scan),
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(config_dir: Path) -> KbConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_dir = Path(config_dir)
    if (config_dir / CONFIG_FILENAME).exists():
        return load_config(config_dir)
    config = create_default_config(config_dir)
    save_config(config)
    return config
