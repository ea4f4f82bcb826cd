"""
imgpkg.cli.registry_flags — Registry flags shared by every command.

  imgpkg pull -b registry.corp/app:v1 -o out \
      --registry-ca-cert-path /etc/ssl/corp-ca.pem \
      --registry-username robot --registry-password "$TOKEN"

Flags win over the environment, the environment over
~/.imgpkg/config.yaml.
"""

import click

_OPTIONS = [
    click.option("--registry-ca-cert-path", "registry_ca_cert_paths", multiple=True,
                 help="Add CA certificates for registry API (format: /tmp/foo) "
                      "(can be specified multiple times)"),
    click.option("--registry-verify-certs/--registry-no-verify-certs", default=None,
                 help="Set whether to verify server's certificate chain and host name"),
    click.option("--registry-insecure", is_flag=True, default=False,
                 help="Allow the use of http when interacting with registries"),
    click.option("--registry-username", default="",
                 help="Set username for auth ($IMGPKG_USERNAME)"),
    click.option("--registry-password", default="",
                 help="Set password for auth ($IMGPKG_PASSWORD)"),
    click.option("--registry-token", default="",
                 help="Set token for auth ($IMGPKG_TOKEN)"),
    click.option("--registry-anon", is_flag=True, default=False,
                 help="Set anonymous auth ($IMGPKG_ANON)"),
    click.option("--registry-local-root", default="",
                 help="Use a registry stored in this directory "
                      "($IMGPKG_REGISTRY_LOCAL_ROOT)"),
]


def registry_options(f):
    """Attach the shared registry flags to a command."""
    for option in reversed(_OPTIONS):
        f = option(f)
    return f


def load_config_with_flags(flags: dict):
    """Config file + environment, overridden by the given flags."""
    from imgpkg.oci.config import load_config

    cfg = load_config()
    reg = cfg.registry

    if flags.get("registry_ca_cert_paths"):
        reg.ca_cert_paths = list(flags["registry_ca_cert_paths"])
    if flags.get("registry_verify_certs") is not None:
        reg.verify_certs = flags["registry_verify_certs"]
    if flags.get("registry_insecure"):
        reg.insecure = True
    if flags.get("registry_username"):
        reg.username = flags["registry_username"]
    if flags.get("registry_password"):
        reg.password = flags["registry_password"]
    if flags.get("registry_token"):
        reg.token = flags["registry_token"]
    if flags.get("registry_anon"):
        reg.anon = True
    if flags.get("registry_local_root"):
        reg.local_root = flags["registry_local_root"]

    return cfg


def open_registry_from_flags(flags: dict):
    from imgpkg.oci.registry import open_registry
    return open_registry(load_config_with_flags(flags).registry)
