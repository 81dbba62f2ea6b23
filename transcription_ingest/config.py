"""Process-wide configuration loaded once from environment variables.

Settings are immutable after load. Integer values fall back to their
default when unparseable and are clamped to a safe range.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from transcription_ingest.models import Endpoint, EndpointRole
from transcription_ingest.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

SELECTION_MODE_FALLBACK = "fallback"
SELECTION_MODE_WEIGHTED = "weighted"

DEFAULT_MESSAGES_PER_FUNCTION_EXECUTION = 1000
MAX_MESSAGES_PER_FUNCTION_EXECUTION = 5000
DEFAULT_FILES_PER_TRANSCRIPTION_JOB = 100
MAX_FILES_PER_TRANSCRIPTION_JOB = 1000
DEFAULT_RETRY_LIMIT = 4
MAX_RETRY_LIMIT = 16
DEFAULT_INITIAL_RETRY_DELAY_IN_MINUTES = 2
DEFAULT_MAX_RETRY_DELAY_IN_MINUTES = 180
MAX_RETRY_DELAY_IN_MINUTES = 180

_TRUE_VALUES = ("true", "1", "yes")


def _get_int(
    env: Mapping[str, str], name: str, default: int, minimum: int, maximum: int
) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default
    return max(minimum, min(maximum, value))


def _get_bool(env: Mapping[str, str], name: str) -> bool:
    return env.get(name, "").strip().lower() in _TRUE_VALUES


def _split(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split("|") if item.strip()]


@dataclass(frozen=True)
class Settings:
    """Immutable process configuration."""

    messages_per_function_execution: int = DEFAULT_MESSAGES_PER_FUNCTION_EXECUTION
    files_per_transcription_job: int = DEFAULT_FILES_PER_TRANSCRIPTION_JOB
    retry_limit: int = DEFAULT_RETRY_LIMIT
    initial_retry_delay_minutes: int = DEFAULT_INITIAL_RETRY_DELAY_IN_MINUTES
    max_retry_delay_minutes: int = DEFAULT_MAX_RETRY_DELAY_IN_MINUTES

    endpoint_selection_mode: str = SELECTION_MODE_FALLBACK
    endpoints: tuple[Endpoint, ...] = ()

    locales: tuple[str, ...] = ("en-US",)
    profanity_filter_mode: str = "Masked"
    punctuation_mode: str = "DictatedAndAutomatic"
    add_diarization: bool = False
    add_word_level_timestamps: bool = False
    transcription_time_to_live: str | None = None

    delete_processed_audio_files: bool = False
    delete_result_artifacts: bool = False

    audio_input_container: str = "audio-input"
    audio_processed_container: str = "audio-processed"
    audio_failed_container: str = "audio-failed"
    error_report_container: str = "error-report"
    json_result_container: str = "json-result-output"

    intake_interval_seconds: float = 60.0

    @property
    def locale(self) -> str:
        """Primary job locale."""
        return self.locales[0]

    @property
    def primary_endpoint(self) -> Endpoint:
        return self.endpoints[0]

    @property
    def fallback_endpoint(self) -> Endpoint:
        return self.endpoints[-1]

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Load settings from environment variables.

        Args:
            env: Mapping to read from (defaults to ``os.environ``).

        Returns:
            Populated Settings.

        Raises:
            ConfigurationError: If the endpoint configuration is incomplete
                or mixes the fallback and weighted policies.
        """
        env = os.environ if env is None else env

        mode = env.get("ENDPOINT_SELECTION_MODE", SELECTION_MODE_FALLBACK)
        mode = mode.strip().lower()
        if mode == SELECTION_MODE_WEIGHTED:
            if env.get("SPEECH_FALLBACK_KEY"):
                raise ConfigurationError(
                    "SPEECH_FALLBACK_KEY cannot be combined with weighted "
                    "endpoint selection",
                    setting="SPEECH_FALLBACK_KEY",
                )
            endpoints = _load_weighted_endpoints(env)
        elif mode == SELECTION_MODE_FALLBACK:
            if env.get("SPEECH_ENDPOINT_PERCENTAGES"):
                raise ConfigurationError(
                    "SPEECH_ENDPOINT_PERCENTAGES cannot be combined with "
                    "fallback endpoint selection",
                    setting="SPEECH_ENDPOINT_PERCENTAGES",
                )
            endpoints = _load_fallback_endpoints(env)
        else:
            raise ConfigurationError(
                f"Invalid ENDPOINT_SELECTION_MODE: '{mode}'. "
                f"Must be '{SELECTION_MODE_FALLBACK}' or '{SELECTION_MODE_WEIGHTED}'",
                setting="ENDPOINT_SELECTION_MODE",
            )

        locales = tuple(_split(env.get("LOCALE"))) or ("en-US",)
        time_to_live = env.get("TRANSCRIPTION_TIME_TO_LIVE") or None

        return cls(
            messages_per_function_execution=_get_int(
                env,
                "MESSAGES_PER_FUNCTION_EXECUTION",
                DEFAULT_MESSAGES_PER_FUNCTION_EXECUTION,
                1,
                MAX_MESSAGES_PER_FUNCTION_EXECUTION,
            ),
            files_per_transcription_job=_get_int(
                env,
                "FILES_PER_TRANSCRIPTION_JOB",
                DEFAULT_FILES_PER_TRANSCRIPTION_JOB,
                1,
                MAX_FILES_PER_TRANSCRIPTION_JOB,
            ),
            retry_limit=_get_int(
                env, "RETRY_LIMIT", DEFAULT_RETRY_LIMIT, 1, MAX_RETRY_LIMIT
            ),
            initial_retry_delay_minutes=_get_int(
                env,
                "INITIAL_RETRY_DELAY_IN_MINUTES",
                DEFAULT_INITIAL_RETRY_DELAY_IN_MINUTES,
                0,
                MAX_RETRY_DELAY_IN_MINUTES,
            ),
            max_retry_delay_minutes=_get_int(
                env,
                "MAX_RETRY_DELAY_IN_MINUTES",
                DEFAULT_MAX_RETRY_DELAY_IN_MINUTES,
                0,
                MAX_RETRY_DELAY_IN_MINUTES,
            ),
            endpoint_selection_mode=mode,
            endpoints=endpoints,
            locales=locales,
            profanity_filter_mode=env.get("PROFANITY_FILTER_MODE") or "Masked",
            punctuation_mode=(
                env.get("PUNCTUATION_MODE") or "DictatedAndAutomatic"
            ).replace(" ", ""),
            add_diarization=_get_bool(env, "ADD_DIARIZATION"),
            add_word_level_timestamps=_get_bool(env, "ADD_WORD_LEVEL_TIMESTAMPS"),
            transcription_time_to_live=time_to_live,
            delete_processed_audio_files=_get_bool(
                env, "DELETE_PROCESSED_AUDIO_FILES_FROM_STORAGE"
            ),
            delete_result_artifacts=_get_bool(env, "DELETE_RESULT_ARTIFACTS"),
            audio_input_container=env.get("AUDIO_INPUT_CONTAINER", "audio-input"),
            audio_processed_container=env.get(
                "AUDIO_PROCESSED_CONTAINER", "audio-processed"
            ),
            audio_failed_container=env.get("AUDIO_FAILED_CONTAINER", "audio-failed"),
            error_report_container=env.get(
                "ERROR_REPORT_OUTPUT_CONTAINER", "error-report"
            ),
            json_result_container=env.get(
                "JSON_RESULT_OUTPUT_CONTAINER", "json-result-output"
            ),
            intake_interval_seconds=float(
                _get_int(env, "INTAKE_INTERVAL_SECONDS", 60, 1, 3600)
            ),
        )


def _load_fallback_endpoints(env: Mapping[str, str]) -> tuple[Endpoint, ...]:
    key = env.get("SPEECH_KEY", "")
    region = env.get("SPEECH_REGION", "")
    if not key or not region:
        raise ConfigurationError(
            "SPEECH_KEY and SPEECH_REGION are required", setting="SPEECH_KEY"
        )
    primary = Endpoint(
        key=key,
        region=region,
        model_id=env.get("CUSTOM_MODEL_ID") or None,
        role=EndpointRole.PRIMARY,
    )

    fallback_key = env.get("SPEECH_FALLBACK_KEY", "")
    fallback_region = env.get("SPEECH_FALLBACK_REGION", "")
    if not fallback_key or not fallback_region:
        logger.info("No fallback endpoint configured, retries use the primary")
        fallback = Endpoint(
            key=key,
            region=region,
            model_id=primary.model_id,
            role=EndpointRole.FALLBACK,
        )
    else:
        fallback = Endpoint(
            key=fallback_key,
            region=fallback_region,
            model_id=env.get("FALLBACK_CUSTOM_MODEL_ID") or None,
            role=EndpointRole.FALLBACK,
        )
    return (primary, fallback)


def _load_weighted_endpoints(env: Mapping[str, str]) -> tuple[Endpoint, ...]:
    keys = _split(env.get("SPEECH_KEYS"))
    regions = _split(env.get("SPEECH_REGIONS"))
    percentages = _split(env.get("SPEECH_ENDPOINT_PERCENTAGES"))
    raw_model_ids = env.get("SPEECH_MODEL_IDS", "")
    model_ids = [m.strip() for m in raw_model_ids.split("|")] if raw_model_ids else []

    if not keys or len(keys) != len(regions) or len(keys) != len(percentages):
        raise ConfigurationError(
            "SPEECH_KEYS, SPEECH_REGIONS and SPEECH_ENDPOINT_PERCENTAGES must "
            "list the same non-zero number of entries",
            setting="SPEECH_KEYS",
        )

    try:
        weights = [int(p) for p in percentages]
    except ValueError as exc:
        raise ConfigurationError(
            f"SPEECH_ENDPOINT_PERCENTAGES must be integers: {percentages}",
            setting="SPEECH_ENDPOINT_PERCENTAGES",
        ) from exc

    if any(w < 0 for w in weights):
        raise ConfigurationError(
            "SPEECH_ENDPOINT_PERCENTAGES must not be negative",
            setting="SPEECH_ENDPOINT_PERCENTAGES",
        )
    if sum(weights) != 100:
        logger.warning(
            "Endpoint percentages sum to %d, unmatched draws go to endpoint 0",
            sum(weights),
        )

    endpoints = []
    for index, (key, region, weight) in enumerate(zip(keys, regions, weights)):
        model_id = model_ids[index] if index < len(model_ids) else None
        endpoints.append(
            Endpoint(
                key=key,
                region=region,
                model_id=model_id or None,
                role=EndpointRole.WEIGHTED,
                weight=weight,
            )
        )
    return tuple(endpoints)
