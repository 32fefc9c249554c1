import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml  # type: ignore
from dotenv import load_dotenv  # type: ignore

logger = logging.getLogger(__name__)

PARTIAL_REPORT_POLICIES = ("display", "write", "none")

DEFAULT_IGNORE = [
    "node_modules",
    ".git",
    "dist",
    ".DS_Store",
    "coverage",
    "build",
    ".next",
    "__pycache__",
    ".venv",
]


def deep_merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = deep_merge_dicts(dict(base.get(key, {})), value)
        else:
            base[key] = value
    return base


def get_user_config_path() -> Path:
    if os.name == 'posix':
        base = Path(os.environ.get('XDG_CONFIG_HOME', Path.home() / '.config'))
    else:
        base = Path(os.environ.get('APPDATA', Path.home() / 'AppData' / 'Roaming'))
    return base / 'sidecar' / 'config.yml'


def get_project_config_path(project_root: Path) -> Path:
    return project_root / '.sidecar' / 'config.yml'


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Error loading config {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config {path}: top level is not a mapping")
        return {}
    logger.debug(f"Loaded config: {path}")
    return data


def _resolve_project_root(raw: Optional[str]) -> Path:
    if raw:
        return Path(raw).expanduser().resolve()
    return Path.cwd().resolve()


def load_config(project_root: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration by merging multiple locations with clear precedence.

    Precedence (lowest → highest):
      1. Package default (sidecar/config.yml)
      2. User config (~/.config/sidecar/config.yml or %APPDATA%/sidecar/config.yml)
      3. Project config (<project_root>/.sidecar/config.yml)
      4. Explicit override via SIDECAR_CONFIG_PATH
      5. Environment variables (PROJECT_ROOT, HOST, PORT, SIDECAR_MCP_CONFIG,
         SIDECAR_LOG_LEVEL)

    The returned mapping always carries a resolved ``project_root``.
    """
    load_dotenv(override=False)

    merged: Dict[str, Any] = {}
    merged = deep_merge_dicts(merged, _read_yaml(Path(__file__).parent / "config.yml"))
    merged = deep_merge_dicts(merged, _read_yaml(get_user_config_path()))

    # The project layer is located from the root known so far
    root = project_root or _resolve_project_root(os.getenv("PROJECT_ROOT") or merged.get("project_root"))
    merged = deep_merge_dicts(merged, _read_yaml(get_project_config_path(root)))

    override = os.getenv("SIDECAR_CONFIG_PATH")
    if override:
        override_path = Path(override).expanduser()
        if override_path.exists():
            merged = deep_merge_dicts(merged, _read_yaml(override_path))
        else:
            logger.warning(f"SIDECAR_CONFIG_PATH points to a missing file: {override_path}")

    server = merged.setdefault("server", {})
    if os.getenv("HOST"):
        server["host"] = os.environ["HOST"]
    if os.getenv("PORT"):
        try:
            server["port"] = int(os.environ["PORT"])
        except ValueError:
            logger.warning(f"Ignoring invalid PORT value: {os.environ['PORT']!r}")
    if os.getenv("SIDECAR_MCP_CONFIG"):
        merged.setdefault("mcp", {})["config_path"] = os.environ["SIDECAR_MCP_CONFIG"]
    if os.getenv("SIDECAR_LOG_LEVEL"):
        merged.setdefault("logging", {})["level"] = os.environ["SIDECAR_LOG_LEVEL"]

    if project_root is not None:
        merged["project_root"] = str(Path(project_root).resolve())
    else:
        merged["project_root"] = str(
            _resolve_project_root(os.getenv("PROJECT_ROOT") or merged.get("project_root"))
        )
    return merged


def load_provider_configs(config_path: Path, project_root: Path) -> Dict[str, Dict[str, Any]]:
    """Read the MCP provider file.

    ``${PROJECT_ROOT}`` placeholders are replaced before parsing. A missing or
    invalid file yields no providers.
    """
    try:
        raw = Path(config_path).read_text(encoding="utf-8")
    except OSError as e:
        logger.error(f"❌ Failed to load MCP config at {config_path}: {e}")
        return {}

    raw = raw.replace("${PROJECT_ROOT}", project_root.as_posix())
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error(f"❌ Invalid MCP config at {config_path}: {e}")
        return {}

    # Accept both a bare mapping and the common {"mcpServers": {...}} wrapper
    if isinstance(data, dict) and isinstance(data.get("mcpServers"), dict):
        data = data["mcpServers"]
    if not isinstance(data, dict):
        logger.error(f"❌ Invalid MCP config at {config_path}: expected an object")
        return {}
    return {name: cfg for name, cfg in data.items() if isinstance(cfg, dict)}


@dataclass
class TreeConfig:
    default_depth: int = 3
    ignore: List[str] = field(default_factory=lambda: list(DEFAULT_IGNORE))


@dataclass
class ShellConfig:
    timeout: float = 30.0
    max_output_chars: int = 20000


@dataclass
class LoggingConfig:
    level: str = "INFO"
    log_to_file: bool = False
    log_path: Optional[Path] = None


@dataclass
class SidecarConfig:
    project_root: Path = field(default_factory=lambda: Path.cwd().resolve())
    host: str = "127.0.0.1"
    port: int = 8080
    command_prefix: str = "mcp"
    mcp_config_path: Path = field(default_factory=lambda: Path("mcp.config.json"))
    filesystem_servers: List[str] = field(default_factory=lambda: ["fs", "filesystem"])
    tree: TreeConfig = field(default_factory=TreeConfig)
    shell: ShellConfig = field(default_factory=ShellConfig)
    partial_report_policy: str = "display"
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    prompts: Dict[str, str] = field(default_factory=dict)
    api_url: str = "http://127.0.0.1:8080"

    def __post_init__(self):
        self.project_root = Path(self.project_root).expanduser().resolve()
        if self.partial_report_policy not in PARTIAL_REPORT_POLICIES:
            raise ValueError(
                f"partial_report_policy must be one of {', '.join(PARTIAL_REPORT_POLICIES)}, "
                f"got {self.partial_report_policy!r}"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SidecarConfig":
        server = data.get("server") or {}
        mcp = data.get("mcp") or {}
        tree = data.get("tree") or {}
        shell = data.get("shell") or {}
        batch = data.get("batch") or {}
        log_cfg = data.get("logging") or {}

        log_path = log_cfg.get("log_path")
        return cls(
            project_root=_resolve_project_root(data.get("project_root")),
            host=str(server.get("host", "127.0.0.1")),
            port=int(server.get("port", 8080)),
            command_prefix=str(data.get("command_prefix") or "mcp"),
            mcp_config_path=Path(str(mcp.get("config_path") or "mcp.config.json")).expanduser(),
            filesystem_servers=list(mcp.get("filesystem_servers") or ["fs", "filesystem"]),
            tree=TreeConfig(
                default_depth=int(tree.get("default_depth", 3)),
                ignore=list(tree.get("ignore") or DEFAULT_IGNORE),
            ),
            shell=ShellConfig(
                timeout=float(shell.get("timeout", 30)),
                max_output_chars=int(shell.get("max_output_chars", 20000)),
            ),
            partial_report_policy=str(batch.get("partial_report_policy", "display")),
            logging=LoggingConfig(
                level=str(log_cfg.get("level", "INFO")),
                log_to_file=bool(log_cfg.get("log_to_file", False)),
                log_path=Path(log_path).expanduser() if log_path else None,
            ),
            prompts={str(k): str(v) for k, v in (data.get("prompts") or {}).items()},
            api_url=str(data.get("api_url") or "http://127.0.0.1:8080"),
        )

    @classmethod
    def load_config(cls, project_root: Optional[Path] = None) -> "SidecarConfig":
        """Load the effective config from every layer (see ``load_config``)."""
        return cls.from_dict(load_config(project_root))

    def provider_configs(self) -> Dict[str, Dict[str, Any]]:
        path = self.mcp_config_path
        if not path.is_absolute():
            path = Path.cwd() / path
        if not path.exists():
            logger.info(f"No MCP config at {path}; only internal tools are available")
            return {}
        return load_provider_configs(path, self.project_root)

    def setup_logging(self) -> "logging.Logger":
        from sidecar.utils.logs import setup_logging

        log_file = self.logging.log_path if self.logging.log_to_file else None
        return setup_logging(self.logging.level, log_file)
