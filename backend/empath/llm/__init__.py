"""
Chat-model backed analysis services.
"""

from .decision_service import LLMDecisionService
from .proactive_service import LLMProactiveMessageService
from .reflection_service import LLMReflectionService

__all__ = [
    "LLMDecisionService",
    "LLMProactiveMessageService",
    "LLMReflectionService",
]
