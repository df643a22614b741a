"""
Host model — what the audio workstation host should look like.

Loaded from audiohost.yml.  Every field has a working default, so an
empty file describes a complete JACK + REAPER + Guitarix host.
"""

from __future__ import annotations

import getpass
import os
from typing import Literal

from pydantic import BaseModel, Field


def _current_user() -> str:
    """The login user, also when provisioning runs under sudo."""
    sudo_user = os.environ.get("SUDO_USER")
    if os.geteuid() == 0 and sudo_user and sudo_user != "root":
        return sudo_user
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "root"


class PackageSettings(BaseModel):
    """System packages, installed in this order."""

    jack: list[str] = Field(default_factory=lambda: ["jackd2", "libjack-jackd2-0"])
    core: list[str] = Field(default_factory=lambda: [
        "git", "build-essential", "clang", "gperf", "intltool",
        "libavahi-gobject-dev", "libbluetooth-dev", "libboost-dev",
        "libboost-iostreams-dev", "libboost-system-dev", "libboost-thread-dev",
        "libeigen3-dev", "libgtk-3-dev", "libgtkmm-3.0-dev", "libjack-dev",
        "liblilv-dev", "liblrdf0-dev", "libsndfile1-dev", "libfftw3-dev",
        "lv2-dev", "python3", "python-is-python3", "sassc", "wget",
        "fonts-roboto", "faust", "alsa-utils", "dkms",
    ])
    realtime_kernel: list[str] = Field(default_factory=lambda: ["linux-image-rt-amd64"])
    kernel_headers: bool = True       # linux-headers-<running release>


class PermissionSettings(BaseModel):
    """Real-time scheduling permissions."""

    group: str = "audio"
    limits_file: str = "/etc/security/limits.conf"
    limits: list[str] = Field(default_factory=lambda: [
        "@audio - rtprio 99",
        "@audio - memlock unlimited",
    ])


class DawSettings(BaseModel):
    """The digital audio workstation, installed via its vendor installer."""

    url: str = "https://www.reaper.fm/files/7.x/reaper742_linux_x86_64.tar.xz"
    install_dir: str = "/opt"
    installer: str = "install-reaper.sh"
    installer_args: list[str] = Field(default_factory=lambda: [
        "--integrate-desktop",
        "--usr-local-bin-symlink",
    ])
    extract_dir: str = "reaper_linux_x86_64"
    executable: str = "reaper"


class AmpSimSettings(BaseModel):
    """The guitar-amp simulator, built from source with waf."""

    repo: str = "https://github.com/brummer10/guitarix.git"
    checkout_dir: str = "guitarix"
    source_subdir: str = "trunk"
    configure_args: list[str] = Field(default_factory=lambda: [
        "--prefix=/usr",
        "--includeresampler",
        "--includeconvolver",
        "--optimization",
    ])
    required_tools: list[str] = Field(default_factory=lambda: ["git", "gperf"])
    executable: str = "guitarix"
    build_timeout: int = 7200
    rebuild: bool = False


class AudioServerSettings(BaseModel):
    """JACK server launch parameters."""

    executable: str = "jackd"
    driver: str = "alsa"
    device_pattern: str = "USB Composite Device"
    sample_rate: int = 48000
    period: int = 256
    nperiods: int = 2
    log_file: str = "~/jack-startup.log"
    settle_seconds: float = 2.0


class SessionSettings(BaseModel):
    """Headless auto-login session that starts X on tty1."""

    enabled: bool = False
    tty: str = "tty1"
    display_manager: str = "slim"
    profile_file: str = "~/.bash_profile"
    profile_line: str = "[[ -z $DISPLAY && $XDG_VTNR -eq 1 ]] && exec startx"
    xinitrc_file: str = "~/.xinitrc"
    window_manager: str = "icewm-session"


class AutostartSettings(BaseModel):
    """Boot-time launch of the audio server and DAW under the supervisor."""

    enabled: bool = True
    supervisor: Literal["auto", "systemd", "runit"] = "auto"
    service_name: str = "audiohost-launch"
    restart_policy: Literal["always", "never"] = "never"
    launcher: str = "audiohost"


class HostConfig(BaseModel):
    """Root configuration — loaded from audiohost.yml."""

    version: int = 1

    user: str = Field(default_factory=_current_user)
    build_dir: str = "~/audio_software_build"
    command_timeout: int = 1800

    packages: PackageSettings = Field(default_factory=PackageSettings)
    permissions: PermissionSettings = Field(default_factory=PermissionSettings)
    daw: DawSettings = Field(default_factory=DawSettings)
    amp_sim: AmpSimSettings = Field(default_factory=AmpSimSettings)
    audio_server: AudioServerSettings = Field(default_factory=AudioServerSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    autostart: AutostartSettings = Field(default_factory=AutostartSettings)
