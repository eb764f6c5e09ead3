from .hook import (
    CandidateInvoker,
    HttpCandidateInvoker,
    InvocationResult,
    LocalInvoker,
    PreTrafficHook,
    VerdictObligation,
    make_handler,
)
from .models import (
    CandidateVersion,
    Deployment,
    DeploymentState,
    LifecycleEvent,
    StatusReport,
    Verdict,
)
from .orchestrator import (
    DeploymentOrchestrator,
    HttpStatusReporter,
    InMemoryDeploymentOrchestrator,
    StatusReporter,
)
from .stage import OUTPUT_KEYS, DeployStage, ServiceProvisioner
from .traffic import (
    ALL_AT_ONCE,
    CANARY_10_PERCENT_5_MINUTES,
    LINEAR_10_PERCENT_EVERY_1_MINUTE,
    TrafficDecision,
    TrafficShiftPolicy,
    TrafficShiftType,
    WeightedAlias,
    decide,
    policy_by_name,
)

__all__ = [
    "CandidateInvoker",
    "HttpCandidateInvoker",
    "InvocationResult",
    "LocalInvoker",
    "PreTrafficHook",
    "VerdictObligation",
    "make_handler",
    "CandidateVersion",
    "Deployment",
    "DeploymentState",
    "LifecycleEvent",
    "StatusReport",
    "Verdict",
    "DeploymentOrchestrator",
    "HttpStatusReporter",
    "InMemoryDeploymentOrchestrator",
    "StatusReporter",
    "OUTPUT_KEYS",
    "DeployStage",
    "ServiceProvisioner",
    "ALL_AT_ONCE",
    "CANARY_10_PERCENT_5_MINUTES",
    "LINEAR_10_PERCENT_EVERY_1_MINUTE",
    "TrafficDecision",
    "TrafficShiftPolicy",
    "TrafficShiftType",
    "WeightedAlias",
    "decide",
    "policy_by_name",
]
