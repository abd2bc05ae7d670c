"""
Host integration: cron @reboot entries, desktop shortcuts and follow-up scripts.
"""

import grp
import pwd
from pathlib import Path
from typing import Iterable, Optional

from host_commands import CommandRunner, MissingDependencyError, PermissionReport
from launchers import is_executable
from provisioning import apply_ownership

SHORTCUT_MODE = 0o755


def read_crontab(runner: CommandRunner) -> str:
    """Current crontab; empty if none is installed yet."""
    result = runner.run('crontab', '-l', check=False)
    if result.returncode != 0:
        return ''
    return result.stdout or ''


def reboot_entry(script: Path) -> str:
    return f'@reboot {script} > /dev/null 2>&1'


def register_reboot_jobs(runner: CommandRunner, scripts: Iterable[Path]) -> list[Path]:
    """Add @reboot entries for executable launchers not already scheduled.

    Returns:
        Scripts added on this call
    """
    current = read_crontab(runner)
    lines = current.splitlines()
    added = []
    for script in scripts:
        script = Path(script)
        if not runner.dry_run and not is_executable(script):
            print(f"  Skipping {script} - does not exist or is not executable.")
            continue
        if any(str(script) in line.split() for line in lines):
            print(f"  {script} is already in the cron jobs.")
            continue
        lines.append(reboot_entry(script))
        added.append(script)
        print(f"  Added {script} to root's cron jobs.")

    if added:
        runner.run('crontab', '-', input='\n'.join(lines) + '\n')
    return added


def primary_group(username: str) -> str:
    """Name of a user's primary group, falling back to the username."""
    try:
        return grp.getgrgid(pwd.getpwnam(username).pw_gid).gr_name
    except KeyError:
        return username


def user_desktop_dir(username: str) -> Path:
    return Path(pwd.getpwnam(username).pw_dir) / 'Desktop'


def render_desktop_entry(target: Path, name: str, icon: Optional[Path] = None) -> str:
    lines = [
        '[Desktop Entry]',
        'Version=1.0',
        'Type=Application',
        f'Name={name}',
        f'Exec={target}',
        'Terminal=true',
    ]
    if icon:
        lines.append(f'Icon={icon}')
    return '\n'.join(lines) + '\n'


def create_desktop_shortcut(target: Path, name: str, owner: str, desktop_dir: Optional[Path] = None,
                            icon: Optional[Path] = None) -> Path:
    """Write an executable .desktop launcher owned by the operating user.

    Raises:
        PermissionNormalizationError: If chown/chmod failed
    """
    desktop_dir = desktop_dir or user_desktop_dir(owner)
    desktop_dir.mkdir(parents=True, exist_ok=True)
    shortcut = desktop_dir / f'{name}.desktop'
    shortcut.write_text(render_desktop_entry(target, name, icon), encoding='utf-8')

    report = PermissionReport()
    apply_ownership(shortcut, owner, primary_group(owner), SHORTCUT_MODE, report)
    report.raise_if_failed()
    return shortcut


def start_launchers(runner: CommandRunner, scripts: Iterable[Path]) -> None:
    for script in scripts:
        if not is_executable(script):
            raise MissingDependencyError(f"Launcher not found or not executable: {script}")
        runner.run(str(script))
        print(f"  Started {script.name}")


def run_monitoring_setup(runner: CommandRunner, script: Path) -> None:
    """Run a monitoring setup script.

    Raises:
        MissingDependencyError: If the script does not exist
        CommandError: If the script fails
    """
    script = Path(script)
    if not script.is_file():
        raise MissingDependencyError(
            f"{script.name} script not found. Aborting Prometheus/Grafana Monitoring setup."
        )
    if not runner.dry_run:
        script.chmod(script.stat().st_mode | 0o111)
    runner.run(str(script), capture=False)
