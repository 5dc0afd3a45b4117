"""
Protocol definitions for the retrieval engine's external collaborators.

The engine never talks to a provider SDK directly; it only relies on these
interfaces, which keeps it testable with in-process fakes.
"""

from typing import List, Protocol, runtime_checkable


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Protocol for embedding generation."""

    def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed a batch of texts.

        Args:
            texts: Texts to embed

        Returns:
            One vector per input text, in input order, all of the same dimension
        """
        ...


@runtime_checkable
class TextGenerator(Protocol):
    """Protocol for text generation (query expansion and answer synthesis)."""

    def generate(self, prompt: str, temperature: float, max_tokens: int) -> str:
        """Generate a completion for a prompt.

        Args:
            prompt: Full prompt text
            temperature: Sampling temperature
            max_tokens: Upper bound on generated tokens

        Returns:
            The generated text
        """
        ...
