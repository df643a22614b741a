"""
Device resolver — find the ALSA card number of an audio interface.

Parses ``aplay -l`` style enumeration, e.g.::

    card 0: PCH [HDA Intel PCH], device 0: ALC3246 Analog [ALC3246 Analog]
    card 2: Device [USB Composite Device], device 0: USB Audio [USB Audio]

Resolution is pure: the caller supplies the enumeration text.  When no
line matches, card 0 (the built-in device) is the fallback.
"""

from __future__ import annotations

import logging
import re

from audiohost.adapters.shell.command import CommandRunner
from audiohost.core.errors import CommandTimeout, ExecutionError
from audiohost.core.models.device import FALLBACK_CARD, DeviceDescriptor

logger = logging.getLogger(__name__)

_CARD_LINE = re.compile(r"^\s*card\s+(\d+):(.*)$")


def resolve_audio_card(device_name_pattern: str, enumeration_output: str) -> DeviceDescriptor:
    """Find the card whose enumeration line contains ``device_name_pattern``.

    The pattern is matched literally (case-sensitive) anywhere after the
    ``card N:`` prefix.  The first matching card wins.

    Returns:
        ``DeviceDescriptor(identifier=N, matched=True)`` on a match,
        otherwise ``DeviceDescriptor(identifier="0", matched=False)``.
    """
    if device_name_pattern:
        for line in enumeration_output.splitlines():
            m = _CARD_LINE.match(line)
            if m and device_name_pattern in m.group(2):
                return DeviceDescriptor(identifier=m.group(1), matched=True)

    return DeviceDescriptor(identifier=FALLBACK_CARD, matched=False)


def enumerate_playback_devices(runner: CommandRunner) -> str:
    """Run ``aplay -l`` and return its output.

    Returns an empty string when the tool is missing or fails, which
    resolves to the fallback card.
    """
    try:
        r = runner.run(["aplay", "-l"], timeout=10, read_only=True)
    except (ExecutionError, CommandTimeout) as e:
        logger.warning("Cannot enumerate audio devices: %s", e)
        return ""
    if not r.ok:
        logger.warning("aplay -l failed: %s", r.error_text)
        return ""
    return r.stdout
