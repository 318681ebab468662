"""
Workspace management for plugin-testkit.
"""

import copy
import json
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validate

from plugin_testkit.exceptions import (
    ConfigurationError,
    InvalidConfigError,
    WorkspaceNotFoundError,
)
from plugin_testkit.util.files import ensure_dir

# Schema ships inside the package
PACKAGE_ROOT = Path(__file__).parent

CONFIG_FILE = "plugin-testkit.yaml"


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Workspace:
    """Manages the plugin-testkit workspace structure and configuration."""

    REQUIRED_DIRS = [
        "samples",
        "runs",
    ]

    DEFAULT_CONFIG = {
        "scaffold": {
            "binary": "operator-sdk",
            "plugins": ["go/v3"],
        },
        "image": "e2e-test-image:go",
        "cluster": {
            "kubectl": "kubectl",
            "kind_cluster": "kind",  # KIND_CLUSTER overrides this
            "token_source": "secret",
        },
        "timeouts": {
            "poll_interval": 1.0,
            "controller": 120,
            "service": 60,
            "custom_resource": 60,
            "probe_pod": 120,
            "probe_logs": 60,
            "local_run_settle": 5,
            "cert_manager_wait": "5m",
            "namespace_delete_wait": "2m",
        },
        "dependencies": {
            "prometheus_operator": {"version": "0.51", "legacy_version": "0.33"},
            "cert_manager": {
                "version": "v1.5.3",
                "legacy_version": "v1.0.4",
                "v1beta1_version": "v0.11.0",
            },
        },
        "samples": [
            {
                "name": "simple-sample",
                "domain": "sample.com",
                "group": "simple",
                "version": "v1alpha1",
                "kind": "Sample",
                "extra_flags": {"api": ["--resource", "--controller"]},
            },
        ],
    }

    def __init__(self, root: Path):
        self.root = Path(root)
        self.config_file = self.root / CONFIG_FILE
        self._config_cache: dict[str, Any] | None = None

    @classmethod
    def find(cls, root: Path | None = None) -> "Workspace":
        """
        Open an initialized workspace.

        Raises:
            WorkspaceNotFoundError: If ``root`` has no plugin-testkit.yaml
        """
        workspace = cls(root or Path.cwd())
        if not workspace.config_file.exists():
            raise WorkspaceNotFoundError(str(workspace.root) if root else None)
        return workspace

    @property
    def samples_dir(self) -> Path:
        return self.root / "samples"

    @property
    def runs_dir(self) -> Path:
        return self.root / "runs"

    def initialize(self) -> None:
        """Initialize workspace directory structure and config."""
        for dir_path in self.REQUIRED_DIRS:
            ensure_dir(self.root / dir_path)

        with open(self.config_file, "w") as f:
            yaml.dump(self.DEFAULT_CONFIG, f, default_flow_style=False, sort_keys=False)

    def load_config(self) -> dict[str, Any]:
        """Load and validate workspace configuration (cached)."""
        if self._config_cache is not None:
            return self._config_cache

        if not self.config_file.exists():
            raise WorkspaceNotFoundError(str(self.root))

        with open(self.config_file) as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise InvalidConfigError(f"not valid YAML: {e}") from e

        if config is None:
            raise InvalidConfigError(f"config file is empty: {self.config_file}")

        if not isinstance(config, dict):
            raise InvalidConfigError(f"expected a mapping, got {type(config).__name__}")

        self._validate_config_schema(config)

        self._config_cache = config
        return config

    def _validate_config_schema(self, config: dict) -> None:
        """Validate config against JSON schema."""
        schema_file = PACKAGE_ROOT / "schema" / "config.schema.json"
        if not schema_file.exists():
            raise ConfigurationError(
                f"Configuration schema file not found: {schema_file}",
                "This indicates an incomplete installation. Reinstall plugin-testkit:\n"
                "  pip install --force-reinstall plugin-testkit",
            )

        schema = json.loads(schema_file.read_text())
        try:
            validate(instance=config, schema=schema)
        except ValidationError as e:
            raise InvalidConfigError(
                f"{e.message} (at {'.'.join(str(p) for p in e.path) or '<root>'})"
            ) from e

    def settings(self) -> dict[str, Any]:
        """Loaded configuration with defaults filled in for missing keys."""
        config = self.load_config()
        defaults = {key: value for key, value in self.DEFAULT_CONFIG.items() if key != "samples"}
        merged = _deep_merge(defaults, config)
        merged.setdefault("samples", [])
        return merged

    def new_run_dir(self, now: datetime | None = None) -> Path:
        """Create ``runs/<timestamp>/`` for one end-to-end run."""
        timestamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
        return ensure_dir(self.runs_dir / timestamp)
