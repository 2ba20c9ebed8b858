"""Pocket Agent main entry point.

Wires the pipeline (language service, Intent Parser, Task Planner,
Memory Manager, Action Executor, Error Classifier, Orchestrator) together
and exposes a CLI that runs one query end to end.

Typical usage::

    python -m pocket_agent.main --query "open spotify" --dry-run

Programmatic usage::

    from pocket_agent.main import build_agent

    agent = build_agent(backend=my_backend, app_directory=my_directory)
    response = asyncio.run(agent.ask("set a reminder to call mom"))
    print(response.text)

Without ``--dry-run`` the agent has no automation backend: text replies
and plan previews work, and every action other than launching an app
fails as ``AUTOMATION_UNAVAILABLE``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Callable
from dataclasses import dataclass

from pocket_agent.config.settings import Settings, load_settings
from pocket_agent.core.action_executor import ActionExecutor
from pocket_agent.core.error_classifier import ErrorClassifier
from pocket_agent.core.intent_parser import IntentParser
from pocket_agent.core.memory_manager import MemoryManager
from pocket_agent.core.orchestrator import Orchestrator
from pocket_agent.core.task_planner import TaskPlanner
from pocket_agent.llm.language_service import LanguageService, create_language_service
from pocket_agent.models.session import (
    AgentResponse,
    ConsentDecision,
    ConsentResponse,
    ResponseStatus,
)
from pocket_agent.platform.dry_run import DryRunAppDirectory, DryRunBackend
from pocket_agent.platform.interface import AppDirectory, AutomationBackend

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pocket Agent
# ---------------------------------------------------------------------------


@dataclass
class PocketAgent:
    """Top-level agent that holds all component references.

    Constructed via the ``build_agent`` factory function.

    Attributes:
        language_service: Text generation and embeddings.
        intent_parser: Rule-first request classifier.
        task_planner: Plan builder and template adapter.
        memory: Experience cache, action memory and profile.
        executor: Device action executor.
        error_classifier: Failure classification and recovery.
        orchestrator: Conversation state machine.
        settings: Immutable application configuration.
    """

    language_service: LanguageService
    intent_parser: IntentParser
    task_planner: TaskPlanner
    memory: MemoryManager
    executor: ActionExecutor
    error_classifier: ErrorClassifier
    orchestrator: Orchestrator
    settings: Settings

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ask(
        self,
        text: str,
        approve: Callable[[AgentResponse], bool] | None = None,
    ) -> AgentResponse:
        """Process *text* and settle any consent request.

        Args:
            text: The user's request.
            approve: Called with the preview when the plan needs consent;
                returns whether to run it.  ``None`` approves everything.

        Returns:
            The final response: a text reply, the execution outcome, a
            cancellation, or a failure.
        """
        response = await self.orchestrator.process_query(text)
        if response.status is not ResponseStatus.AWAITING_CONSENT or response.plan is None:
            return response

        approved = approve is None or approve(response)
        decision = ConsentDecision.APPROVED if approved else ConsentDecision.REJECTED
        return await self.orchestrator.handle_consent(
            ConsentResponse(plan_id=response.plan.id, decision=decision)
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_agent(
    settings: Settings | None = None,
    api_key: str = "",
    backend: AutomationBackend | None = None,
    app_directory: AppDirectory | None = None,
    language_service: LanguageService | None = None,
) -> PocketAgent:
    """Create all components and return a fully wired ``PocketAgent``.

    Args:
        settings: Optional settings override.  When ``None`` the
            default settings are used.
        api_key: Anthropic API key, used by the remote operating modes.
        backend: Automation backend, or ``None`` when automation is not
            enabled.
        app_directory: Installed apps; the simulated default set when
            omitted.
        language_service: Optional override of the service chosen by
            the operating mode.

    Returns:
        A fully constructed ``PocketAgent`` instance.
    """
    if settings is None:
        settings = Settings()

    # 1. Language service
    if language_service is None:
        language_service = create_language_service(settings, api_key=api_key)
    logger.info("Language service: %s", type(language_service).__name__)

    # 2. Intent Parser
    intent_parser = IntentParser(language_service, settings)

    # 3. Task Planner
    task_planner = TaskPlanner(intent_parser, language_service, settings)

    # 4. Memory
    memory = MemoryManager(settings)

    # 5. Action Executor
    if app_directory is None:
        app_directory = DryRunAppDirectory()
    executor = ActionExecutor(app_directory, backend=backend, settings=settings)
    if backend is None:
        logger.warning("No automation backend: only app launches can run")

    # 6. Error Classifier
    error_classifier = ErrorClassifier(settings)

    # 7. Orchestrator
    orchestrator = Orchestrator(
        planner=task_planner,
        executor=executor,
        memory=memory,
        classifier=error_classifier,
        settings=settings,
    )

    return PocketAgent(
        language_service=language_service,
        intent_parser=intent_parser,
        task_planner=task_planner,
        memory=memory,
        executor=executor,
        error_classifier=error_classifier,
        orchestrator=orchestrator,
        settings=settings,
    )


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def main() -> None:
    """Parse CLI arguments, build the agent, run the query, and print results."""
    parser = argparse.ArgumentParser(
        prog="pocket_agent",
        description=(
            "Pocket Agent -- on-device assistant. "
            "Plan and run phone tasks from natural language."
        ),
    )
    parser.add_argument(
        "--query",
        "-q",
        required=True,
        help="The request to handle (e.g. 'open spotify').",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run actions against a simulated device.",
    )
    parser.add_argument(
        "--auto-approve",
        "-y",
        action="store_true",
        help="Approve plans without asking.",
    )
    parser.add_argument(
        "--api-key",
        "-k",
        default="",
        help=(
            "Anthropic API key. Falls back to the ANTHROPIC_API_KEY "
            "environment variable if not provided."
        ),
    )
    parser.add_argument(
        "--config",
        "-c",
        default="",
        help="Path to a JSON settings file.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging.",
    )

    args = parser.parse_args()

    # -- Logging setup ---------------------------------------------------
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # -- Settings and API key --------------------------------------------
    try:
        settings = load_settings(args.config) if args.config else Settings()
    except (OSError, ValueError) as exc:
        logger.error("Cannot load settings from %s: %s", args.config, exc)
        sys.exit(1)

    api_key: str = args.api_key or os.environ.get(
        "ANTHROPIC_API_KEY", "",
    )

    # -- Build and run ---------------------------------------------------
    backend = DryRunBackend(synthesize_missing=True) if args.dry_run else None
    logger.info("Building Pocket Agent")
    agent = build_agent(settings=settings, api_key=api_key, backend=backend)

    approve = None if args.auto_approve else _prompt_for_consent
    response = asyncio.run(agent.ask(args.query, approve=approve))

    # -- Print result summary --------------------------------------------
    _print_result_summary(args.query, response)

    sys.exit(0 if response.status is ResponseStatus.COMPLETED else 1)


def _prompt_for_consent(response: AgentResponse) -> bool:
    """Show the plan preview and ask on stdin."""
    print(response.text)
    try:
        answer = input("Proceed? [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _print_result_summary(query: str, response: AgentResponse) -> None:
    """Print a human-readable summary of the final response.

    Args:
        query: The request as typed.
        response: The final ``AgentResponse``.
    """
    separator = "-" * 60
    print(separator)
    print(f"Query:      {query}")
    print(f"Status:     {response.status.value.upper()}")
    if response.plan is not None:
        print(f"Plan:       {response.plan.description}")
        print(
            f"Actions:    {len(response.plan.actions)} "
            f"({response.plan.safety_level.name})"
        )
    print(f"Latency:    {response.latency_ms:.0f} ms")
    if response.error_kind is not None:
        print(f"Error:      {response.error_kind.value}")
    print(f"Response:   {response.text}")
    print(separator)


if __name__ == "__main__":
    main()
