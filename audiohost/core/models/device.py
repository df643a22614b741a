"""
DeviceDescriptor — the result of audio card resolution.

Produced fresh on every resolution; never cached, because the set of
attached sound cards can change between boots.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

# Card used when no device matches the requested pattern.
FALLBACK_CARD = "0"


class DeviceDescriptor(BaseModel):
    """An ALSA card identifier and whether it came from a real match."""

    model_config = ConfigDict(frozen=True)

    identifier: str = FALLBACK_CARD
    matched: bool = False

    @property
    def alsa_device(self) -> str:
        """ALSA hardware device name, e.g. ``hw:2``."""
        return f"hw:{self.identifier}"
