from .client import LLMClient
