from lecturenotes.clients.gateway import (
    GenerationResult,
    GroqGateway,
    LLMGateway,
    create_gateway,
)
from lecturenotes.clients.groq_client import GroqClient

__all__ = ["GenerationResult", "GroqClient", "GroqGateway", "LLMGateway", "create_gateway"]
