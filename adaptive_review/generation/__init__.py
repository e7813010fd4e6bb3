from .client import ChatCompletionsGenerator, ContentGenerator, GenerationResult

__all__ = [
    "ChatCompletionsGenerator",
    "ContentGenerator",
    "GenerationResult",
]
