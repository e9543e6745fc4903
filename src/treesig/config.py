"""Configuration for signing and verification runs.

Settings are path-level and come from, lowest precedence first:

- defaults
- a YAML config file (``--config`` or TREESIG_CONFIG)
- environment variables
- command line options

``TreeSigSettings.resolve()`` loads the key material and produces the
``TreeSigConfig`` the walker consumes.

Example YAML::

    private_key: /etc/treesig/signing.pem
    public_key_dirs:
      - /etc/treesig/trusted.d
    relative_to: /usr/share/app
    path_prefix: share
    recursive: true
    force: false
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from typing import Any

import jsonschema
import yaml

from treesig.errors import ConfigurationError
from treesig.keys import (
    PrivateKey,
    PublicKey,
    load_private_key,
    load_public_key,
    load_public_keys_from_dir,
)
from treesig.paths import canonicalize

ENV_CONFIG = "TREESIG_CONFIG"
ENV_PRIVATE_KEY = "TREESIG_PRIVATE_KEY"
ENV_PUBLIC_KEY_DIR = "TREESIG_PUBLIC_KEY_DIR"

CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "private_key": {"type": "string"},
        "public_keys": {"type": "array", "items": {"type": "string"}},
        "public_key_dirs": {"type": "array", "items": {"type": "string"}},
        "relative_to": {"type": "string"},
        "path_prefix": {"type": "string"},
        "recursive": {"type": "boolean"},
        "force": {"type": "boolean"},
    },
}


@dataclass
class TreeSigConfig:
    """Resolved configuration threaded into every walk."""

    force_overwrite: bool = False
    recursive: bool = False
    private_key: PrivateKey | None = None
    trusted_public_keys: list[PublicKey] = field(default_factory=list)
    path_prefix: str | None = None
    relative_root_override: str | None = None

    def __post_init__(self):
        if self.relative_root_override is not None:
            self.relative_root_override = canonicalize(self.relative_root_override)
        if self.path_prefix:
            self.path_prefix = os.path.normpath(self.path_prefix)
        # "" and "." both cover the whole tree
        if self.path_prefix in ("", "."):
            self.path_prefix = None


@dataclass
class TreeSigSettings:
    """Unresolved settings: key locations and flags."""

    private_key: str | None = None
    public_keys: list[str] = field(default_factory=list)
    public_key_dirs: list[str] = field(default_factory=list)
    relative_to: str | None = None
    path_prefix: str | None = None
    recursive: bool = False
    force: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TreeSigSettings:
        """Create settings from a dictionary; missing keys keep defaults."""
        try:
            jsonschema.validate(instance=data, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e.message}") from e

        return cls(**{f.name: data[f.name] for f in fields(cls) if f.name in data})

    @classmethod
    def from_yaml(cls, path: str) -> TreeSigSettings:
        """Load settings from a YAML file. An empty file yields defaults."""
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigurationError(f"Can't read config {path}: {e.strerror or e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Can't parse config {path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Invalid configuration in {path}: expected a mapping")
        return cls.from_dict(data)

    def with_env(self, environ: dict[str, str] | None = None) -> TreeSigSettings:
        """Overlay TREESIG_PRIVATE_KEY and TREESIG_PUBLIC_KEY_DIR."""
        environ = os.environ if environ is None else environ
        updated = replace(self, public_key_dirs=list(self.public_key_dirs))

        private_key = environ.get(ENV_PRIVATE_KEY)
        if private_key:
            updated.private_key = private_key

        key_dir = environ.get(ENV_PUBLIC_KEY_DIR)
        if key_dir and key_dir not in updated.public_key_dirs:
            updated.public_key_dirs.append(key_dir)
        return updated

    def with_overrides(self, **overrides: Any) -> TreeSigSettings:
        """Overlay explicitly given values; None means 'not given'.

        List values extend rather than replace.
        """
        updated = replace(self, public_keys=list(self.public_keys), public_key_dirs=list(self.public_key_dirs))
        for name, value in overrides.items():
            if value is None:
                continue
            if name in ("public_keys", "public_key_dirs"):
                getattr(updated, name).extend(value)
            else:
                setattr(updated, name, value)
        return updated

    def resolve(self, need_private_key: bool = False) -> TreeSigConfig:
        """Load key material and build the resolved configuration.

        Raises:
            ConfigurationError: If a required key is not configured
            AccessFailure, ParseFailure: If key material can't be loaded
        """
        private_key = None
        if self.private_key:
            private_key = load_private_key(self.private_key)
        elif need_private_key:
            raise ConfigurationError("No private key specified")

        trusted: list[PublicKey] = [load_public_key(p) for p in self.public_keys]
        for key_dir in self.public_key_dirs:
            trusted.extend(load_public_keys_from_dir(key_dir))

        return TreeSigConfig(
            force_overwrite=self.force,
            recursive=self.recursive,
            private_key=private_key,
            trusted_public_keys=trusted,
            path_prefix=self.path_prefix,
            relative_root_override=self.relative_to,
        )


def load_settings(config_path: str | None = None, environ: dict[str, str] | None = None) -> TreeSigSettings:
    """Load settings from the config file (if any) and the environment."""
    environ = os.environ if environ is None else environ
    config_path = config_path or environ.get(ENV_CONFIG)
    settings = TreeSigSettings.from_yaml(config_path) if config_path else TreeSigSettings()
    return settings.with_env(environ)
