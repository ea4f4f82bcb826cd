"""
imgpkg.cli.config_cmd — imgpkg config command.

  imgpkg config set --local-root /srv/imgpkg/registry
  imgpkg config set --ca-cert-path /etc/ssl/corp-ca.pem --concurrency 10
  imgpkg config set --local-root ""
  imgpkg config show
"""

import click


@click.group("config")
def config_cmd():
    """Manage ~/.imgpkg/config.yaml."""
    pass


@config_cmd.command("set")
@click.option("--local-root", default=None,
              help="Use a registry stored in this directory (empty string to unset)")
@click.option("--insecure/--no-insecure", default=None,
              help="Allow the use of http when interacting with registries")
@click.option("--verify-certs/--no-verify-certs", default=None,
              help="Verify the server's certificate chain and host name")
@click.option("--ca-cert-path", "ca_cert_paths", multiple=True,
              help="Replace the CA certificates (can be specified multiple times)")
@click.option("--concurrency", type=click.IntRange(min=1), default=None,
              help="Default number of concurrent uploads")
def config_set(local_root, insecure, verify_certs, ca_cert_paths, concurrency):
    """Update the saved config."""
    from imgpkg.oci.config import config_path, load_config, save_config

    # environment overrides must not leak into the file
    cfg = load_config(apply_env=False)
    reg = cfg.registry

    if local_root is not None:
        reg.local_root = local_root
    if insecure is not None:
        reg.insecure = insecure
    if verify_certs is not None:
        reg.verify_certs = verify_certs
    if ca_cert_paths:
        reg.ca_cert_paths = list(ca_cert_paths)
    if concurrency is not None:
        cfg.concurrency = concurrency

    save_config(cfg)
    click.echo(f"✓ Config written: {config_path()}")


@config_cmd.command("show")
def config_show():
    """Show the effective config (file + environment)."""
    from imgpkg.oci.config import load_config

    cfg = load_config()
    reg = cfg.registry

    click.echo(f"{'local_root':16s} {reg.local_root or '-'}")
    click.echo(f"{'insecure':16s} {str(reg.insecure).lower()}")
    click.echo(f"{'verify_certs':16s} {str(reg.verify_certs).lower()}")
    click.echo(f"{'ca_cert_paths':16s} {', '.join(reg.ca_cert_paths) or '-'}")
    click.echo(f"{'concurrency':16s} {cfg.concurrency}")
