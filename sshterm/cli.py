"""
sshterm/cli.py

Command-line interface for sshterm.

Usage:
    sshterm hosts
    sshterm import-ssh-config
    sshterm connect web01
    sshterm exec web01 "uptime"
    sshterm forward web01 8080 localhost 80
    sshterm password set web01.example.com ops
"""

import json
import logging
import os
import select
import shutil
import signal
import sys
import time
from pathlib import Path
from types import SimpleNamespace
from typing import Optional

import click

from .config import SettingsManager
from .errors import SSHTermError
from .manager import HostStore, export_hosts, import_hosts, import_ssh_config
from .session import SessionManager, DataReceived, PumpState
from .session.base import SessionEvent
from .terminal import format_banner
from .vault import CredentialKind, KeyringCredentialStore


def format_table(items: list, columns: list[tuple[str, str, int]]) -> str:
    """
    Format items as a simple table.

    Args:
        items: List of objects with attributes
        columns: List of (attr_name, header, width) tuples
    """
    if not items:
        return "No results."

    header = ""
    separator = ""
    for attr, name, width in columns:
        header += f"{name:<{width}} "
        separator += "-" * width + " "

    lines = [header.rstrip(), separator.rstrip()]

    for item in items:
        row = ""
        for attr, name, width in columns:
            val = getattr(item, attr, "")
            if val is None:
                val = ""
            val_str = str(val)[:width - 1]
            row += f"{val_str:<{width}} "
        lines.append(row.rstrip())

    return "\n".join(lines)


class CLIContext:
    """Lazily built collaborators shared by commands."""

    def __init__(self, config_path: Optional[Path], hosts_path: Optional[Path], output_json: bool):
        self.settings_manager = SettingsManager(config_path)
        self.settings = self.settings_manager.settings
        self.hosts_path = hosts_path or Path(self.settings.hosts_file).expanduser()
        self.output_json = output_json
        self._store: Optional[HostStore] = None
        self._manager: Optional[SessionManager] = None

    @property
    def store(self) -> HostStore:
        if self._store is None:
            self._store = HostStore(self.hosts_path)
        return self._store

    @property
    def manager(self) -> SessionManager:
        if self._manager is None:
            self._manager = SessionManager(
                credentials=KeyringCredentialStore(),
                settings=self.settings,
            )
        return self._manager

    def find_host(self, name: str):
        profile = self.store.find(name)
        if profile is None:
            raise click.ClickException(f"No saved host named '{name}'")
        return profile

    def open_session(self, name: str):
        profile = self.find_host(name)
        try:
            session = self.manager.connect(profile).result()
        except SSHTermError as e:
            raise click.ClickException(str(e))
        self.settings.add_recent_profile(profile.id)
        self.settings_manager.save()
        return session


@click.group()
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None,
              help="Settings file (default ~/.sshterm/config.json)")
@click.option("--hosts-file", "hosts_path", type=click.Path(path_type=Path), default=None,
              help="Saved hosts file")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.option("-v", "--verbose", count=True, help="-v for info, -vv for debug logging")
@click.pass_context
def cli(ctx, config_path, hosts_path, output_json, verbose):
    """sshterm - SSH sessions with jump hosts, forwards and SFTP."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = CLIContext(config_path, hosts_path, output_json)


@cli.command("hosts")
@click.pass_obj
def list_hosts(obj: CLIContext):
    """List saved hosts."""
    hosts = obj.store.hosts

    if obj.output_json:
        click.echo(json.dumps([h.to_dict() for h in hosts], indent=2))
        return

    rows = []
    for h in hosts:
        rows.append(SimpleNamespace(
            name=h.name or h.hostname,
            target=f"{h.username}@{h.address}",
            via=h.jump_host.hostname if h.jump_host else "",
            auth=h.auth_strategy.value if h.auth_strategy else "stored",
            group=h.group,
        ))
    columns = [
        ("name", "NAME", 20),
        ("target", "TARGET", 32),
        ("via", "VIA", 16),
        ("auth", "AUTH", 10),
        ("group", "GROUP", 15),
    ]
    click.echo(format_table(rows, columns))
    click.echo(f"\n{len(hosts)} host(s)")


@cli.command("import-ssh-config")
@click.argument("path", required=False, type=click.Path(path_type=Path))
@click.pass_obj
def import_ssh_config_cmd(obj: CLIContext, path):
    """Import hosts from an OpenSSH config (default ~/.ssh/config)."""
    imported, failed = import_ssh_config(obj.store, path)
    click.echo(f"Imported {imported} host(s), {failed} failed")


@cli.command("import")
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.pass_obj
def import_cmd(obj: CLIContext, path):
    """Import hosts from a JSON or YAML export."""
    try:
        imported, failed = import_hosts(obj.store, path)
    except (ValueError, OSError) as e:
        raise click.ClickException(f"Import failed: {e}")
    click.echo(f"Imported {imported} host(s), {failed} failed")


@cli.command("export")
@click.argument("path", type=click.Path(path_type=Path))
@click.option("--secrets", is_flag=True, help="Include passwords and keys")
@click.pass_obj
def export_cmd(obj: CLIContext, path, secrets):
    """Export hosts to JSON (or YAML with a .yaml suffix)."""
    count = export_hosts(obj.store.hosts, path, include_secrets=secrets)
    click.echo(f"Exported {count} host(s) to {path}")


@cli.command("exec")
@click.argument("name")
@click.argument("command")
@click.option("-t", "--timeout", type=float, default=None, help="Command timeout in seconds")
@click.pass_obj
def exec_cmd(obj: CLIContext, name, command, timeout):
    """Run a command on a saved host and print its output."""
    session = obj.open_session(name)
    try:
        result = obj.manager.execute(session.id, command, timeout=timeout)
    except SSHTermError as e:
        raise click.ClickException(str(e))
    finally:
        obj.manager.disconnect(session.id)

    if obj.output_json:
        click.echo(json.dumps({
            "command": result.command,
            "exit_code": result.exit_code,
            "stdout": result.stdout,
            "stderr": result.stderr,
        }, indent=2))
    else:
        click.echo(result.stdout, nl=False)
        if result.stderr:
            click.echo(result.stderr, nl=False, err=True)
    sys.exit(result.exit_code)


@cli.command("forward")
@click.argument("name")
@click.argument("local_port", type=int)
@click.argument("remote_host")
@click.argument("remote_port", type=int)
@click.pass_obj
def forward_cmd(obj: CLIContext, name, local_port, remote_host, remote_port):
    """Forward LOCAL_PORT to REMOTE_HOST:REMOTE_PORT through a saved host."""
    session = obj.open_session(name)
    try:
        tunnel = obj.manager.open_local_forward(session.id, local_port, remote_host, remote_port)
        click.echo(f"Forwarding 127.0.0.1:{tunnel.local_port} -> {remote_host}:{remote_port} (Ctrl-C to stop)")
        while session.is_connected:
            time.sleep(1.0)
        click.echo("Connection lost", err=True)
    except SSHTermError as e:
        raise click.ClickException(str(e))
    except KeyboardInterrupt:
        pass
    finally:
        obj.manager.disconnect(session.id)


@cli.command("connect")
@click.argument("name")
@click.pass_obj
def connect_cmd(obj: CLIContext, name):
    """Open an interactive shell on a saved host."""
    try:
        import termios
        import tty
    except ImportError:
        raise click.ClickException("Interactive shells need a POSIX terminal")

    if not sys.stdin.isatty():
        raise click.ClickException("stdin is not a terminal")

    session = obj.open_session(name)
    out = sys.stdout.buffer

    def sink(event: SessionEvent) -> None:
        if isinstance(event, DataReceived):
            out.write(event.data)
        else:
            banner = format_banner(event)
            if not banner:
                return
            out.write(banner)
        out.flush()

    cols, rows = shutil.get_terminal_size()
    fd = sys.stdin.fileno()
    saved = termios.tcgetattr(fd)
    try:
        pump = obj.manager.open_shell(session.id, sink, cols=cols, rows=rows)
        signal.signal(
            signal.SIGWINCH,
            lambda *_: pump.resize(*shutil.get_terminal_size()),
        )
        tty.setraw(fd)
        while pump.state is PumpState.READING:
            r, _, _ = select.select([fd], [], [], 0.1)
            if fd in r:
                data = os.read(fd, 1024)
                if not data:
                    break
                pump.write(data)
    except SSHTermError as e:
        raise click.ClickException(str(e))
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)
        signal.signal(signal.SIGWINCH, signal.SIG_DFL)
        obj.manager.disconnect(session.id)


@cli.group("password")
def password_group():
    """Manage stored passwords and keys (system keyring)."""


@password_group.command("set")
@click.argument("host")
@click.argument("username")
@click.option("--key-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Store this private key instead of a password")
def password_set(host, username, key_file):
    """Store a password (prompted) or private key for USERNAME@HOST."""
    store = KeyringCredentialStore()
    if key_file:
        ok = store.save(CredentialKind.PRIVATE_KEY, host, username, key_file.read_text())
    else:
        secret = click.prompt(f"Password for {username}@{host}", hide_input=True)
        ok = store.save(CredentialKind.PASSWORD, host, username, secret)
    if not ok:
        raise click.ClickException("Could not write to the keyring")
    click.echo(f"Stored credential for {username}@{host}")


@password_group.command("delete")
@click.argument("host")
@click.argument("username")
@click.option("--key", "is_key", is_flag=True, help="Delete the stored private key")
def password_delete(host, username, is_key):
    """Delete a stored password (or key) for USERNAME@HOST."""
    kind = CredentialKind.PRIVATE_KEY if is_key else CredentialKind.PASSWORD
    if KeyringCredentialStore().delete(kind, host, username):
        click.echo(f"Deleted {kind.value} for {username}@{host}")
    else:
        raise click.ClickException(f"No {kind.value} stored for {username}@{host}")


def main():
    cli()


if __name__ == "__main__":
    main()
