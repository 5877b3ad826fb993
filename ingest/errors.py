from __future__ import annotations


class PipelineError(Exception):
    """A source-scoped failure. Never fatal to an aggregation cycle."""

    kind = "pipeline_error"

    def __init__(self, source_id: str, reason: str) -> None:
        super().__init__(f"{source_id}: {reason}")
        self.source_id = source_id
        self.reason = reason


class FetchFailure(PipelineError):
    kind = "fetch_failure"

    def __init__(
        self,
        source_id: str,
        reason: str,
        *,
        status_code: int | None = None,
        redirects: tuple[str, ...] = (),
    ) -> None:
        super().__init__(source_id, reason)
        self.status_code = status_code
        self.redirects = redirects


class NormalizationFailure(PipelineError):
    kind = "normalization_failure"


class UnsupportedFormat(PipelineError):
    kind = "unsupported_format"


class RegistryUnavailable(Exception):
    """The registry could not be read; the whole request fails."""
