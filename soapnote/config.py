"""Settings shared by the provider adapters."""

import os

DEFAULT_TIMEOUT = 300.0


def provider_timeout() -> float:
    """Seconds before a transcription or report call is abandoned (``PROVIDER_TIMEOUT``)."""
    return float(os.environ.get("PROVIDER_TIMEOUT", DEFAULT_TIMEOUT))
