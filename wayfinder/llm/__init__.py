"""Content generation backends used by responders."""

from wayfinder.llm.generator import (
    AnthropicGenerator,
    CannedGenerator,
    ContentGenerator,
    Generation,
    build_generator,
)

__all__ = [
    "AnthropicGenerator",
    "CannedGenerator",
    "ContentGenerator",
    "Generation",
    "build_generator",
]
