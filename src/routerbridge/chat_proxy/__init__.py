"""Chat proxy exposing an OpenAI-compatible interface atop OpenRouter.

Clients speak to a single mocked model id; requests are rewritten for the
configured upstream model and responses (streaming or not) are translated back.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
