from __future__ import annotations

import traceback
from dataclasses import dataclass


class PipelineError(RuntimeError):
    """Base error"""


@dataclass(frozen=True, slots=True)
class ActionError:
    """
    A normalized error record for action failures.
    """

    exc_type: str
    message: str
    traceback: str


def action_error_from_exc(exc: BaseException) -> ActionError:
    return ActionError(
        exc_type=type(exc).__name__,
        message=str(exc),
        traceback="".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        ),
    )


class ConfigurationError(PipelineError):
    """
    Non-retryable: the pipeline declaration itself is invalid. Raised before any
    action runs.
    """


class DuplicateNameError(ConfigurationError):
    """Two stages, two actions of one stage, or two namespaces share a name"""


class UnknownReferenceError(ConfigurationError):
    """A variable or artifact reference names something no action produces"""


class ForwardReferenceError(ConfigurationError):
    """
    A reference names a producer that does not finish strictly before the
    consumer starts (later stage, same or later run_order, or itself)
    """


class ActionExecutionError(PipelineError):
    """An action failed while running"""


class UnresolvedVariableError(ActionExecutionError):
    """A variable binding had no value when its consumer was about to start"""


class ApprovalRejectedError(ActionExecutionError):
    """A manual approval gate was rejected"""


class PipelineAbortedError(ActionExecutionError):
    """The run was aborted while this action was suspended"""


class DeploymentError(PipelineError):
    """Deployment orchestration failure"""


class DeploymentInProgressError(DeploymentError):
    """An environment already has a candidate under validation"""


class DeploymentRolledBackError(DeploymentError, ActionExecutionError):
    """The candidate failed validation and the previous version stayed live"""


class UnknownLifecycleEventError(DeploymentError):
    """A status report referenced a lifecycle event the orchestrator never issued"""


class LifecycleEventResolvedError(DeploymentError):
    """A second verdict was reported for an already resolved lifecycle event"""


class ValidationFailure(PipelineError):
    """
    The candidate did not behave correctly during pre-traffic validation.
    Always mapped to a Failed verdict, never propagated out of the hook.
    """


class TransientError(PipelineError):
    """
    Retryable failures such as network timeouts, temporary upstream 5xx
    """
