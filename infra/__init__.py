"""Infrastructure modules for ada-trader"""

from .alerting import AlertService, AlertSeverity  # noqa: F401
from .control_server import ControlServer  # noqa: F401
from .cost_governor import CostGovernor  # noqa: F401
from .metrics import MetricsRecorder, CycleStats  # noqa: F401
from .state_store import AgentStateStore, build_state_store  # noqa: F401

__all__ = [
	"AlertService",
	"AlertSeverity",
	"ControlServer",
	"CostGovernor",
	"MetricsRecorder",
	"CycleStats",
	"AgentStateStore",
	"build_state_store",
]
