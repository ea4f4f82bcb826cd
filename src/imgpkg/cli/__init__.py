"""
imgpkg.cli — CLI entry point.

Commands:
  imgpkg push  (-b|-i) REF -f PATH...      — Push files as a bundle or image
  imgpkg pull  (-b|-i|--lock) -o DIR       — Pull a bundle or image to disk
  imgpkg copy  (-b|-i|--lock) --to-repo R  — Relocate with all referenced images
  imgpkg tag list -i REF                   — List tags of a repository
  imgpkg config (set|show)                 — Manage ~/.imgpkg/config.yaml
  imgpkg version                           — Print client version
"""

import click

from imgpkg.cli.push_cmd import push_cmd
from imgpkg.cli.pull_cmd import pull_cmd
from imgpkg.cli.copy_cmd import copy_cmd
from imgpkg.cli.tag_cmd import tag_cmd
from imgpkg.cli.config_cmd import config_cmd
from imgpkg.cli.version_cmd import version_cmd


@click.group()
@click.version_option(package_name="imgpkg")
def main():
    """imgpkg — Store files as OCI images and bundles."""
    pass


main.add_command(push_cmd, "push")
main.add_command(pull_cmd, "pull")
main.add_command(copy_cmd, "copy")
main.add_command(tag_cmd, "tag")
main.add_command(config_cmd, "config")
main.add_command(version_cmd, "version")
