"""
Base packages, Docker installation, time sync and client image pulls.
"""

import shutil

from host_commands import CommandRunner

BASE_PACKAGES = [
    'apt-transport-https', 'ca-certificates', 'curl', 'htop', 'gnupg', 'git', 'ufw',
    'tmux', 'dialog', 'rhash', 'openssl', 'wmctrl', 'jq', 'lsb-release', 'dbus-x11',
    'python3', 'python3-venv', 'python3-pip',
]

DOCKER_PACKAGES = ['docker-ce', 'docker-ce-cli', 'containerd.io', 'docker-compose-plugin']
DOCKER_KEYRING = '/usr/share/keyrings/docker-archive-keyring.gpg'
DOCKER_SOURCES_LIST = '/etc/apt/sources.list.d/docker.list'
DOCKER_REPO_URL = 'https://download.docker.com/linux/ubuntu'

APT_ENV = ['env', 'DEBIAN_FRONTEND=noninteractive']


def install_base_packages(runner: CommandRunner) -> None:
    print("  Updating package lists...")
    runner.run(*APT_ENV, 'apt-get', 'update', '-y')
    print("  Installing required packages...")
    runner.run(*APT_ENV, 'apt-get', 'install', '-y', *BASE_PACKAGES)


def docker_repository_line(codename: str, arch: str = 'amd64') -> str:
    return f"deb [arch={arch} signed-by={DOCKER_KEYRING}] {DOCKER_REPO_URL} {codename} stable\n"


def ensure_docker(runner: CommandRunner) -> bool:
    """Install Docker from the upstream repository unless already present.

    A snap-packaged Docker is removed first; it cannot share the data root.

    Returns:
        True if Docker was installed on this call
    """
    if shutil.which('docker') is not None:
        print("  Docker already installed")
        return False

    snaps = runner.run('snap', 'list', check=False)
    if snaps.returncode == 0 and any(line.split()[:1] == ['docker'] for line in (snaps.stdout or '').splitlines()):
        print("  Docker snap package found. Removing...")
        runner.run('snap', 'remove', 'docker')

    print("  Adding Docker repository and installing Docker...")
    key = runner.run('curl', '-fsSL', f'{DOCKER_REPO_URL}/gpg').stdout or ''
    runner.run('gpg', '--batch', '--yes', '--dearmor', '-o', DOCKER_KEYRING, input=key)
    codename = runner.output('lsb_release', '-cs')
    arch = runner.output('dpkg', '--print-architecture') or 'amd64'
    runner.run('tee', DOCKER_SOURCES_LIST, input=docker_repository_line(codename, arch))
    runner.run(*APT_ENV, 'apt-get', 'update', '-y')
    runner.run(*APT_ENV, 'apt-get', 'install', '-y', *DOCKER_PACKAGES)
    runner.run('systemctl', 'enable', '--now', 'docker')
    return True


def enable_time_sync(runner: CommandRunner) -> None:
    """Beacon clients need an accurate clock."""
    runner.run('timedatectl', 'set-ntp', 'true')
    print("  NTP timesync has been enabled")


def pull_images(runner: CommandRunner, images: list[str]) -> None:
    for image in images:
        print(f"  Pulling {image}")
        runner.run('docker', 'pull', image, capture=False)
