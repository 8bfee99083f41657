"""Migration configuration.

Programmatic use builds a :class:`MigrationConfig` directly. The command line
loads a YAML or JSON file with three sections::

    store:
      type: couchdb
      url: http://localhost:5984
      database: orders
      username: admin
      password: ${COUCHDB_PASSWORD}
    migration:
      source_design_doc: orders
      source_view: by_customer
      source_params: {include_docs: true}
      batch_size: 20
      retry_conflicts: 2
    plugin: myproject.migrations.add_totals   # or path/to/plugin.py

String values may reference environment variables as ``${VAR}``,
``${VAR:default}`` or ``${VAR:-default}``. Environment variables named
``COUCHMIGRATE_<SECTION>__<KEY>`` override file values, e.g.
``COUCHMIGRATE_STORE__URL`` or ``COUCHMIGRATE_MIGRATION__LIMIT``.

The plugin module provides the row callbacks as module attributes:
``changes`` (required), ``fetch_keys`` and ``source_filter`` (optional).
"""

from __future__ import annotations

import copy
import importlib
import importlib.util
import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, Any

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .retry import DEFAULT_RETRY_CONFLICTS, RESUBMIT_POLICIES
from .scanner import DEFAULT_PAGE_SIZE

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from .rows import Row

logger = logging.getLogger(__name__)

ENV_PREFIX = "COUCHMIGRATE_"
ENV_SEPARATOR = "__"
SECTIONS = ("store", "migration")
SECRET_KEYS = frozenset({"password", "auth_token"})

VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::(-)?([^}]*))?\}")

DEFAULT_BATCH_SIZE = 20


@dataclass
class MigrationConfig:
    """Options of one migration run.

    Attributes:
        source_design_doc: Design document holding the source view
        source_view: View to page through
        changes: ``changes(row, docs)`` returning a change, a list of changes or None
        source_params: Extra view query parameters
        batch_size: Rows per bulk write (sub-batch size)
        page_size: Rows per view request
        limit: Maximum number of rows to process, None for all
        fetch_keys: ``fetch_keys(row)`` returning a document id, a list of ids or None
        source_filter: ``source_filter(row)`` returning True to keep the row
        retry_conflicts: Retries of conflicting rows; ``False`` disables retries
        resubmit: ``"row"`` or ``"conflicted"``, see :mod:`couchmigrate.retry`
        on_complete: Called exactly once with the fatal error or None
    """

    source_design_doc: str
    source_view: str
    changes: Callable[[Row, list[Any]], Any] | None = None
    source_params: dict[str, Any] = field(default_factory=dict)
    batch_size: int = DEFAULT_BATCH_SIZE
    page_size: int = DEFAULT_PAGE_SIZE
    limit: int | None = None
    fetch_keys: Callable[[Row], Any] | None = None
    source_filter: Callable[[Row], Any] | None = None
    retry_conflicts: int | bool | None = DEFAULT_RETRY_CONFLICTS
    resubmit: str = "row"
    on_complete: Callable[[Exception | None], Any] | None = None

    def __post_init__(self):
        """Validate and normalize configuration."""
        if not self.source_design_doc:
            raise ConfigurationError("source_design_doc", "is required")
        if not self.source_view:
            raise ConfigurationError("source_view", "is required")
        if self.changes is None:
            raise ConfigurationError("changes", "a changes callback is required")
        if self.source_params is None:
            self.source_params = {}
        if self.batch_size is None or self.batch_size <= 0:
            raise ConfigurationError("batch_size", "must be positive")
        if self.page_size is None or self.page_size <= 0:
            raise ConfigurationError("page_size", "must be positive")
        if self.limit is not None and self.limit < 0:
            raise ConfigurationError("limit", "must be non-negative")

        if self.retry_conflicts is False:
            self.retry_conflicts = 0
        elif self.retry_conflicts is None or self.retry_conflicts is True:
            self.retry_conflicts = DEFAULT_RETRY_CONFLICTS
        if self.retry_conflicts < 0:
            raise ConfigurationError("retry_conflicts", "must be non-negative")

        if self.resubmit not in RESUBMIT_POLICIES:
            raise ConfigurationError(
                "resubmit", f"must be one of {', '.join(RESUBMIT_POLICIES)}"
            )

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        plugin: ModuleType | None = None,
    ) -> MigrationConfig:
        """Build a config from a ``migration`` section and optional plugin module."""
        options = dict(data)
        unknown = set(options) - {
            "source_design_doc", "source_view", "source_params", "batch_size",
            "page_size", "limit", "retry_conflicts", "resubmit",
        }
        if unknown:
            raise ConfigurationError(
                "migration", f"unknown options: {', '.join(sorted(unknown))}"
            )
        if plugin is not None:
            for name in ("changes", "fetch_keys", "source_filter"):
                callback = getattr(plugin, name, None)
                if callback is not None:
                    options[name] = callback
        return cls(
            source_design_doc=options.get("source_design_doc", ""),
            source_view=options.get("source_view", ""),
            **{k: v for k, v in options.items()
               if k not in ("source_design_doc", "source_view")},
        )


def load_plugin(reference: str, base_dir: Path | None = None) -> ModuleType:
    """Import a plugin module by dotted name or by ``.py`` file path.

    Relative file paths are resolved against ``base_dir`` (the config file
    directory) when given.
    """
    if reference.endswith(".py") or os.sep in reference or "/" in reference:
        path = Path(reference)
        if not path.is_absolute() and base_dir is not None:
            path = base_dir / path
        if not path.exists():
            raise ConfigurationError("plugin", f"plugin file not found: {path}")
        spec = importlib.util.spec_from_file_location(path.stem, path)
        if spec is None or spec.loader is None:
            raise ConfigurationError("plugin", f"cannot load plugin file: {path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        logger.debug("Loaded plugin from %s", path)
        return module

    try:
        return importlib.import_module(reference)
    except ImportError as e:
        raise ConfigurationError("plugin", f"cannot import '{reference}': {e}") from e


def substitute_env(value: Any, environ: Mapping[str, str] | None = None) -> Any:
    """Recursively replace ``${VAR}`` references in strings.

    Raises:
        ConfigurationError: If a referenced variable is unset and has no default
    """
    environ = os.environ if environ is None else environ
    if isinstance(value, dict):
        return {k: substitute_env(v, environ) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_env(item, environ) for item in value]
    if not isinstance(value, str):
        return value

    def replacer(match: re.Match) -> str:
        name = match.group(1)
        if name in environ:
            return environ[name]
        if match.group(2) is not None or match.group(3) is not None:
            return match.group(3) or ""
        raise ConfigurationError(name, "environment variable is not set")

    return VAR_PATTERN.sub(replacer, value)


def parse_env_value(value: str) -> Any:
    """Parse an override value as bool, int, float, JSON or plain string."""
    lowered = value.lower()
    if lowered in ("true", "yes"):
        return True
    if lowered in ("false", "no"):
        return False
    for parse in (int, float):
        try:
            return parse(value)
        except ValueError:
            pass
    if value[:1] in ("{", "["):
        try:
            return json.loads(value)
        except ValueError:
            pass
    return value


def apply_env_overrides(
    data: dict[str, Any], environ: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """Apply ``COUCHMIGRATE_<SECTION>__<KEY>`` overrides to ``data``."""
    environ = os.environ if environ is None else environ
    result = copy.deepcopy(data)
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        parts = name[len(ENV_PREFIX):].lower().split(ENV_SEPARATOR)
        if len(parts) == 1 and parts[0] == "plugin":
            result["plugin"] = value
            continue
        if len(parts) != 2 or parts[0] not in SECTIONS:
            logger.debug("Ignoring environment variable %s", name)
            continue
        section, key = parts
        result.setdefault(section, {})[key] = parse_env_value(value)
    return result


def load_config_file(
    path: str | Path,
    environ: Mapping[str, str] | None = None,
    dotenv: bool = True,
) -> dict[str, Any]:
    """Load a YAML or JSON configuration file.

    Loads ``.env`` from the current directory first (without overriding
    variables already set), then substitutes ``${VAR}`` references and
    applies environment overrides.

    Returns:
        Dictionary with ``store``, ``migration`` and optional ``plugin`` keys
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError("config", f"configuration file not found: {path}")
    if dotenv:
        load_dotenv()

    suffix = path.suffix.lower()
    with open(path) as f:
        if suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f) or {}
        elif suffix == ".json":
            data = json.load(f)
        else:
            raise ConfigurationError("config", f"unsupported file format: {suffix}")

    if not isinstance(data, dict):
        raise ConfigurationError("config", "top level must be a mapping")

    data = apply_env_overrides(substitute_env(data, environ), environ)
    data.setdefault("store", {})
    data.setdefault("migration", {})
    data["config_dir"] = str(path.resolve().parent)
    return data


def mask_secrets(data: Any) -> Any:
    """Copy of ``data`` with secret values replaced by ``***``."""
    if isinstance(data, dict):
        return {
            k: "***" if k in SECRET_KEYS and v else mask_secrets(v)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [mask_secrets(item) for item in data]
    return data
