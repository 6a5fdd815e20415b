"""Supervisor-side components: tunnel, debug proxy and worker lifecycle."""

from .debug_proxy import DebugPortProxy, ProxyBindError, ProxyPair, ProxyPairState
from .launcher import WorkerLaunchError, WorkerLauncher
from .models import WorkerProcess, WorkerState
from .process import DebugPortState, ProcessSupervisor, SupervisorState
from .terminal import TerminalDevice, TerminalModeError
from .tunnel import SessionTunnel, TunnelBindError

__all__ = [
    "DebugPortProxy",
    "DebugPortState",
    "ProcessSupervisor",
    "ProxyBindError",
    "ProxyPair",
    "ProxyPairState",
    "SessionTunnel",
    "SupervisorState",
    "TerminalDevice",
    "TerminalModeError",
    "TunnelBindError",
    "WorkerLaunchError",
    "WorkerLauncher",
    "WorkerProcess",
    "WorkerState",
]
