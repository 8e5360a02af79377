"""
Prompt Enhancement

Optional collaborator that rewrites raw prompts before submission.
"""

from .gemini import GeminiPromptEnhancer, PromptEnhancement, PromptEnhancer

__all__ = ["GeminiPromptEnhancer", "PromptEnhancement", "PromptEnhancer"]
