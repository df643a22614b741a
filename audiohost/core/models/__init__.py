"""
Domain models — step/stage/report types, device descriptors, host config.

All models are re-exported here for convenient access:

    from audiohost.core.models import Step, Stage, StepOutcome, RunReport, HostConfig
"""

from audiohost.core.models.device import FALLBACK_CARD, DeviceDescriptor
from audiohost.core.models.host import (
    AmpSimSettings,
    AudioServerSettings,
    AutostartSettings,
    DawSettings,
    HostConfig,
    PackageSettings,
    PermissionSettings,
    SessionSettings,
)
from audiohost.core.models.step import (
    ReportEntry,
    RunReport,
    RunState,
    RunStatus,
    Stage,
    StagePolicy,
    Step,
    StepOutcome,
)

__all__ = [
    "AmpSimSettings",
    "AudioServerSettings",
    "AutostartSettings",
    "DawSettings",
    # device.py
    "DeviceDescriptor",
    "FALLBACK_CARD",
    # host.py
    "HostConfig",
    "PackageSettings",
    "PermissionSettings",
    "ReportEntry",
    # step.py
    "RunReport",
    "RunState",
    "RunStatus",
    "SessionSettings",
    "Stage",
    "StagePolicy",
    "Step",
    "StepOutcome",
]
