"""Configuration defaults for the Pocket Agent pipeline.

Provides the ``Settings`` dataclass that holds every tunable parameter
for the language service, planning stage, experience memory, consent
policy, and action executor.

Typical usage::

    from pocket_agent.config.settings import get_default_settings

    settings = get_default_settings()
    print(settings.similarity_threshold)

Overrides can be loaded from a JSON file::

    settings = load_settings("agent.json")
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class OperatingMode(Enum):
    """Which language service backs intent classification and replies.

    Attributes:
        LOCAL_ONLY: Only the on-device rule-based service is used.
        API_FALLBACK: The on-device service is tried first.  The remote
            API takes over when it errors out, and also when its reply
            is an UNCLEAR classification or the generic answer.
        LOCAL_ENHANCED: The remote API is the primary service and the
            on-device service is the fallback.
    """

    LOCAL_ONLY = "local_only"
    API_FALLBACK = "api_fallback"
    LOCAL_ENHANCED = "local_enhanced"


# Action names whose plans always carry at least one CRITICAL step.
DEFAULT_CRITICAL_ACTIONS: tuple[str, ...] = (
    "send_message",
    "make_call",
    "call",
    "delete",
    "purchase",
    "transfer_money",
    "modify_settings",
)


@dataclass(frozen=True)
class Settings:
    """Immutable configuration for the whole agent pipeline.

    Each attribute group maps to one component.  Delays are expressed
    in seconds so that tests can zero them out.

    Attributes:
        operating_mode: Value of ``OperatingMode`` selecting the
            language service arrangement.
        fallback_timeout_seconds: Time budget for the primary language
            service before the fallback service is asked.
        llm_max_tokens: Token ceiling for free-form text replies.
        classification_max_tokens: Token ceiling for the intent
            classification prompt.
        api_model: Model name sent to the remote Messages API.
        api_timeout_text_seconds: HTTP timeout for remote requests.
        api_max_retries: Maximum number of attempts for transient API
            failures.
        api_backoff_base_seconds: Base delay for exponential back-off
            between API retries.
        planning_timeout_seconds: Hard timeout around plan construction.
        max_actions_per_plan: Plans longer than this are truncated.
        max_templates: Capacity of the experience cache.  Inserting
            past capacity evicts the least recently used template.
        similarity_threshold: Minimum match confidence for the
            orchestrator to reuse a cached template instead of planning.
        template_match_floor: Minimum score for the experience cache to
            report a match at all.
        template_merge_threshold: Similarity above which a learned plan
            reinforces an existing template instead of adding one.
        max_action_sequences: Capacity of the action memory.  The
            oldest sequence is dropped first.
        max_pattern_values: How many observed values the profile keeps per
            interaction parameter.  The oldest value is dropped first.
        always_preview: When True every plan goes through consent.
        auto_rollback: When True the plan's rollback actions run after
            a non-recoverable failure.
        critical_actions: Action names treated as sensitive.
        app_cache_ttl_seconds: Lifetime of the installed-app snapshot.
        app_fuzzy_floor: Minimum longest-common-subsequence ratio for
            a fuzzy app-name match.
        click_retry_delay_seconds: Pause before the single click retry.
        input_focus_delay_seconds: Pause between focusing a field and
            typing into it.
        wait_poll_interval_seconds: Poll interval for element waits.
        launch_settle_seconds: Pause after a successful app launch.
        swipe_duration_ms: Duration of synthetic scroll swipes.
    """

    # -- Language service -----------------------------------------------------
    operating_mode: str = OperatingMode.LOCAL_ONLY.value
    fallback_timeout_seconds: float = 30.0
    llm_max_tokens: int = 512
    classification_max_tokens: int = 50
    api_model: str = "claude-sonnet-4-20250514"
    api_timeout_text_seconds: float = 15.0
    api_max_retries: int = 3
    api_backoff_base_seconds: float = 2.0

    # -- Planning -------------------------------------------------------------
    planning_timeout_seconds: float = 30.0
    max_actions_per_plan: int = 20

    # -- Experience memory ----------------------------------------------------
    max_templates: int = 5000
    similarity_threshold: float = 0.85
    template_match_floor: float = 0.70
    template_merge_threshold: float = 0.90
    max_action_sequences: int = 1000
    max_pattern_values: int = 1000

    # -- Safety ---------------------------------------------------------------
    always_preview: bool = True
    auto_rollback: bool = True
    critical_actions: tuple[str, ...] = DEFAULT_CRITICAL_ACTIONS

    # -- Action executor ------------------------------------------------------
    app_cache_ttl_seconds: float = 60.0
    app_fuzzy_floor: float = 0.6
    click_retry_delay_seconds: float = 1.0
    input_focus_delay_seconds: float = 0.2
    wait_poll_interval_seconds: float = 0.2
    launch_settle_seconds: float = 0.5
    swipe_duration_ms: int = 300

    # -- Factory & serialisation ----------------------------------------------

    @property
    def mode(self) -> OperatingMode:
        """The ``operating_mode`` string as an ``OperatingMode``.

        Unrecognised values fall back to ``LOCAL_ONLY``.
        """
        try:
            return OperatingMode(self.operating_mode)
        except ValueError:
            logger.warning(
                "Unknown operating mode %r, using local_only",
                self.operating_mode,
            )
            return OperatingMode.LOCAL_ONLY

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """Create a ``Settings`` instance from a plain dictionary.

        Unknown keys are silently ignored so that forward-compatible
        config files do not break older agent versions.  A list given
        for ``critical_actions`` is converted to a tuple.

        Args:
            data: Dictionary whose keys correspond to ``Settings``
                field names.

        Returns:
            A new ``Settings`` instance populated from *data*, with
            defaults filling any missing keys.
        """
        known_names = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in known_names}
        if "critical_actions" in filtered:
            filtered["critical_actions"] = tuple(filtered["critical_actions"])
        return cls(**filtered)

    def to_dict(self) -> dict[str, Any]:
        """Serialise the settings to a plain dictionary.

        Returns:
            A shallow dictionary mapping every field name to its
            current value.
        """
        return asdict(self)


def get_default_settings() -> Settings:
    """Return a ``Settings`` instance with all default values.

    Returns:
        A freshly constructed ``Settings`` with default values.
    """
    return Settings()


def load_settings(path: str | Path) -> Settings:
    """Load settings overrides from a JSON file.

    A missing file yields the defaults.  A file that is not a JSON
    object is rejected with ``ValueError``.

    Args:
        path: Location of the JSON config file.

    Returns:
        ``Settings`` with the file's values laid over the defaults.
    """
    config_path = Path(path)
    if not config_path.exists():
        logger.info("Config %s not found, using defaults", config_path)
        return get_default_settings()

    data = json.loads(config_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"config file {config_path} must hold a JSON object")
    return Settings.from_dict(data)
