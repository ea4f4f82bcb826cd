"""
imgpkg.oci.config — Global config management.

~/.imgpkg/config.yaml:

    registry:
      local_root: /srv/imgpkg/registry   # use a filesystem registry
      insecure: false
      verify_certs: true
      ca_cert_paths:
        - /etc/ssl/private-ca.pem
    concurrency: 5

Environment (overrides the file, CLI flags override both):

    IMGPKG_USERNAME, IMGPKG_PASSWORD, IMGPKG_TOKEN, IMGPKG_ANON=true,
    IMGPKG_REGISTRY_LOCAL_ROOT, IMGPKG_CONCURRENCY
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


IMGPKG_HOME = Path(os.environ.get("IMGPKG_HOME", Path.home() / ".imgpkg"))

DEFAULT_CONCURRENCY = 5


@dataclass
class RegistryOpts:
    """How to reach registries."""
    ca_cert_paths: list[str] = field(default_factory=list)
    verify_certs: bool = True
    insecure: bool = False

    username: str = ""
    password: str = ""
    token: str = ""
    anon: bool = False

    local_root: str = ""


@dataclass
class ImgpkgConfig:
    """Global imgpkg config."""
    registry: RegistryOpts = field(default_factory=RegistryOpts)
    concurrency: int = DEFAULT_CONCURRENCY


def config_path() -> Path:
    return IMGPKG_HOME / "config.yaml"


def load_config(apply_env: bool = True) -> ImgpkgConfig:
    """Read ~/.imgpkg/config.yaml and apply environment overrides.

    With apply_env=False only the file is read, which is what gets
    written back by save_config.
    """
    cfg = ImgpkgConfig()

    cp = config_path()
    if cp.exists():
        with open(cp) as f:
            data = yaml.safe_load(f) or {}

        reg = data.get("registry", {})
        if isinstance(reg, dict):
            cfg.registry.local_root = reg.get("local_root", "") or ""
            cfg.registry.insecure = bool(reg.get("insecure", False))
            cfg.registry.verify_certs = bool(reg.get("verify_certs", True))
            cfg.registry.ca_cert_paths = list(reg.get("ca_cert_paths", []))
        cfg.concurrency = int(data.get("concurrency", DEFAULT_CONCURRENCY))

    if apply_env:
        _apply_env(cfg)
    return cfg


def _apply_env(cfg: ImgpkgConfig) -> None:
    reg = cfg.registry
    reg.username = reg.username or os.environ.get("IMGPKG_USERNAME", "")
    reg.password = reg.password or os.environ.get("IMGPKG_PASSWORD", "")
    reg.token = reg.token or os.environ.get("IMGPKG_TOKEN", "")
    if os.environ.get("IMGPKG_ANON") == "true":
        reg.anon = True

    local_root = os.environ.get("IMGPKG_REGISTRY_LOCAL_ROOT", "").strip()
    if local_root:
        reg.local_root = local_root

    concurrency = os.environ.get("IMGPKG_CONCURRENCY", "").strip()
    if concurrency:
        cfg.concurrency = int(concurrency)


def save_config(cfg: ImgpkgConfig) -> None:
    """Write ~/.imgpkg/config.yaml.

    Credentials are never written; they come from the
    environment or the command line.
    """
    IMGPKG_HOME.mkdir(parents=True, exist_ok=True)

    reg = cfg.registry
    registry: dict[str, Any] = {}
    if reg.local_root:
        registry["local_root"] = reg.local_root
    if reg.insecure:
        registry["insecure"] = True
    if not reg.verify_certs:
        registry["verify_certs"] = False
    if reg.ca_cert_paths:
        registry["ca_cert_paths"] = reg.ca_cert_paths

    data: dict[str, Any] = {}
    if registry:
        data["registry"] = registry
    if cfg.concurrency != DEFAULT_CONCURRENCY:
        data["concurrency"] = cfg.concurrency

    with open(config_path(), "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
