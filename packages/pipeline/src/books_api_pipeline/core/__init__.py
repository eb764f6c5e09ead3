from .config import HookConfig, Settings, load_settings
from .errors import (
    ActionError,
    ActionExecutionError,
    ApprovalRejectedError,
    ConfigurationError,
    DeploymentError,
    DeploymentInProgressError,
    DeploymentRolledBackError,
    DuplicateNameError,
    ForwardReferenceError,
    LifecycleEventResolvedError,
    PipelineAbortedError,
    PipelineError,
    TransientError,
    UnknownLifecycleEventError,
    UnknownReferenceError,
    UnresolvedVariableError,
    ValidationFailure,
    action_error_from_exc,
)
from .fs import atomic_write_bytes, atomic_write_text
from .hashing import sha256_bytes
from .json import atomic_write_json, stable_json_dumps
from .logging import ILogger, bind, configure_logging, get_logger
from .provenance import new_run_id
from .retry import DeterministicExponentialBackoff
from .time import format_duration_ms, monotonic_ms, utc_now_iso

__all__ = [
    "HookConfig",
    "Settings",
    "load_settings",
    "ActionError",
    "ActionExecutionError",
    "ApprovalRejectedError",
    "ConfigurationError",
    "DeploymentError",
    "DeploymentInProgressError",
    "DeploymentRolledBackError",
    "DuplicateNameError",
    "ForwardReferenceError",
    "LifecycleEventResolvedError",
    "PipelineAbortedError",
    "PipelineError",
    "TransientError",
    "UnknownLifecycleEventError",
    "UnknownReferenceError",
    "UnresolvedVariableError",
    "ValidationFailure",
    "action_error_from_exc",
    "atomic_write_bytes",
    "atomic_write_text",
    "sha256_bytes",
    "atomic_write_json",
    "stable_json_dumps",
    "ILogger",
    "bind",
    "configure_logging",
    "get_logger",
    "new_run_id",
    "DeterministicExponentialBackoff",
    "format_duration_ms",
    "monotonic_ms",
    "utc_now_iso",
]
