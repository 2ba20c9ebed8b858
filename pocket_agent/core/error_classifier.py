"""Classifies action failures and decides how a running plan reacts.

The error classifier receives an ``ActionFailure`` produced by the
executor and recommends what the Orchestrator should do next.  It is a
pure-logic module with no side effects.

Policy:

* A recoverable failure (an element that did not show up, a wait that
  timed out) is recorded and the plan continues.  The run will not
  count as fully successful.
* A non-recoverable failure stops the plan.  The plan's rollback actions
  run when ``auto_rollback`` is enabled.

The module also owns the short, human-readable messages shown for each
``ErrorKind``; raw exception payloads never reach the user.

Typical usage::

    from pocket_agent.config.settings import get_default_settings
    from pocket_agent.core.error_classifier import ErrorClassifier

    classifier = ErrorClassifier(get_default_settings())
    result = classifier.classify(failure, step_description="Send message")
    if not classifier.should_continue(result):
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pocket_agent.config.settings import Settings
from pocket_agent.models.task import ActionFailure, ErrorKind


class RecoveryAction(Enum):
    """What the execution loop does after a failure."""

    CONTINUE = "continue"
    ROLLBACK_AND_ABORT = "rollback_and_abort"
    ABORT = "abort"


@dataclass(frozen=True)
class ErrorClassification:
    """Result of classifying an action failure.

    Attributes:
        kind: Taxonomy entry of the failure.
        recovery_action: Recommended reaction.
        description: Explanation for logs.
    """

    kind: ErrorKind
    recovery_action: RecoveryAction
    description: str

    @property
    def should_rollback(self) -> bool:
        return self.recovery_action is RecoveryAction.ROLLBACK_AND_ABORT


_USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.PARSING_AMBIGUOUS: "I'm not sure what you'd like me to do.",
    ErrorKind.PLANNING_TIMEOUT: "Planning took too long. Please try again.",
    ErrorKind.PLANNING_FAILURE: "I couldn't work out how to do that.",
    ErrorKind.AUTOMATION_UNAVAILABLE: (
        "Device automation is not enabled. Please turn it on in settings."
    ),
    ErrorKind.ELEMENT_NOT_FOUND: "I couldn't find an element on screen.",
    ErrorKind.ACTION_EXECUTION_FAILURE: "An action could not be completed.",
    ErrorKind.NO_PENDING_CONSENT: "No action pending consent.",
    ErrorKind.LANGUAGE_SERVICE_FAILURE: "I couldn't come up with an answer right now.",
}


def user_message(kind: ErrorKind) -> str:
    """Short message shown to the user for *kind*."""
    return _USER_MESSAGES[kind]


class ErrorClassifier:
    """Maps action failures to a recovery action.

    The classifier is stateless: every call to ``classify`` is
    independent.

    Args:
        settings: Supplies the ``auto_rollback`` policy.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or Settings()

    # -- public API -----------------------------------------------------------

    def classify(
        self,
        failure: ActionFailure,
        step_description: str = "",
    ) -> ErrorClassification:
        """Classify *failure* and recommend a reaction.

        Args:
            failure: The failed result from the executor.
            step_description: Optional description of the failed action,
                included in the explanation.

        Returns:
            An ``ErrorClassification``.
        """
        ctx = f" during '{step_description}'" if step_description else ""

        if failure.recoverable:
            return ErrorClassification(
                kind=failure.kind,
                recovery_action=RecoveryAction.CONTINUE,
                description=f"Recoverable {failure.kind.value}{ctx}; continuing",
            )

        if self._settings.auto_rollback:
            return ErrorClassification(
                kind=failure.kind,
                recovery_action=RecoveryAction.ROLLBACK_AND_ABORT,
                description=(
                    f"Non-recoverable {failure.kind.value}{ctx}; "
                    "rolling back and stopping"
                ),
            )
        return ErrorClassification(
            kind=failure.kind,
            recovery_action=RecoveryAction.ABORT,
            description=f"Non-recoverable {failure.kind.value}{ctx}; stopping",
        )

    def should_continue(self, classification: ErrorClassification) -> bool:
        """``True`` when the plan keeps running after the failure."""
        return classification.recovery_action is RecoveryAction.CONTINUE
