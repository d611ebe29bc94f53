from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    max_research_iterations: int = 3
    max_development_iterations: int = 3
    model_research: str = "gpt-4o-mini"
    model_development: str = "gpt-4o"
    temperature: float = 0.3
    max_completion_tokens: int = 4_096
    staging_prefix: str = "issue-factory-staging"
    target_root: str = ""
    recursion_limit: int = 100
    diff_preview_lines: int = 50

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            max_research_iterations=_get_env_int("ISSUE_FACTORY_MAX_RESEARCH_ITERATIONS", default=3, minimum=1, maximum=20),
            max_development_iterations=_get_env_int(
                "ISSUE_FACTORY_MAX_DEVELOPMENT_ITERATIONS", default=3, minimum=1, maximum=20
            ),
            model_research=os.getenv("ISSUE_FACTORY_MODEL_RESEARCH", "gpt-4o-mini"),
            model_development=os.getenv("ISSUE_FACTORY_MODEL_DEVELOPMENT", "gpt-4o"),
            temperature=_get_env_float("ISSUE_FACTORY_TEMPERATURE", default=0.3, minimum=0.0, maximum=2.0),
            max_completion_tokens=_get_env_int("ISSUE_FACTORY_MAX_COMPLETION_TOKENS", default=4_096, minimum=256),
            staging_prefix=os.getenv("ISSUE_FACTORY_STAGING_PREFIX", "issue-factory-staging"),
            target_root=os.getenv("ISSUE_FACTORY_TARGET_ROOT", ""),
            recursion_limit=_get_env_int("ISSUE_FACTORY_RECURSION_LIMIT", default=100, minimum=25),
            diff_preview_lines=_get_env_int("ISSUE_FACTORY_DIFF_PREVIEW_LINES", default=50, minimum=1),
        ).normalized()

    @property
    def target_root_path(self) -> Path | None:
        """Return the target root as a Path, or None when unset."""
        return Path(self.target_root).expanduser() if self.target_root else None

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        model_research = self.model_research.strip()
        if not model_research:
            raise ValueError("ISSUE_FACTORY_MODEL_RESEARCH must be non-empty")
        model_development = self.model_development.strip()
        if not model_development:
            raise ValueError("ISSUE_FACTORY_MODEL_DEVELOPMENT must be non-empty")

        if self.max_research_iterations < 1:
            raise ValueError(
                f"ISSUE_FACTORY_MAX_RESEARCH_ITERATIONS must be >= 1, got: {self.max_research_iterations}"
            )
        if self.max_development_iterations < 1:
            raise ValueError(
                f"ISSUE_FACTORY_MAX_DEVELOPMENT_ITERATIONS must be >= 1, got: {self.max_development_iterations}"
            )

        staging_prefix = self.staging_prefix.strip()
        if not staging_prefix:
            raise ValueError("ISSUE_FACTORY_STAGING_PREFIX must be non-empty")
        if "/" in staging_prefix or "\\" in staging_prefix or staging_prefix in {".", ".."}:
            raise ValueError(
                f"ISSUE_FACTORY_STAGING_PREFIX must be a plain directory name, got: {staging_prefix!r}"
            )

        return RuntimeSettings(
            max_research_iterations=self.max_research_iterations,
            max_development_iterations=self.max_development_iterations,
            model_research=model_research,
            model_development=model_development,
            temperature=self.temperature,
            max_completion_tokens=self.max_completion_tokens,
            staging_prefix=staging_prefix,
            target_root=self.target_root.strip(),
            recursion_limit=self.recursion_limit,
            diff_preview_lines=self.diff_preview_lines,
        )


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound (default 10M, prevents absurd values).

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed


def _get_env_float(name: str, default: float, minimum: float, maximum: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got: {raw!r}") from exc
    if not minimum <= parsed <= maximum:
        raise ValueError(f"{name} must be between {minimum} and {maximum}, got: {parsed}")
    return parsed
