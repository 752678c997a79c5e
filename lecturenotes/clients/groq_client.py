from groq import AsyncGroq

# Reference list of models currently available on Groq's platform.
# Update this list as Groq adds or retires models.
# See https://console.groq.com/docs/models for the authoritative list.
AVAILABLE_MODELS = [
    "llama-3.3-70b-versatile",
    "llama-3.1-8b-instant",
    "meta-llama/llama-4-scout-17b-16e-instruct",
    "meta-llama/llama-4-maverick-17b-128e-instruct",
    "qwen/qwen3-32b",
    "moonshotai/kimi-k2-instruct",
    "openai/gpt-oss-120b",
    "openai/gpt-oss-20b",
]


class GroqClient:
    """Async wrapper around the official Groq SDK.

    Usage::

        groq = GroqClient("llama-3.3-70b-versatile", api_key)
        text = await groq.chat(messages)                 # plain completion
        raw = await groq.chat(messages, json_mode=True)  # JSON object mode

    ``chat`` always returns the raw content string.  Parsing and retrying
    belong to the gateway (``lecturenotes.clients.gateway``).
    """

    def __init__(self, model: str, api_key: str) -> None:
        self._model = model
        self._client = AsyncGroq(api_key=api_key)

    @property
    def default_model(self) -> str:
        return self._model

    # ------------------------------------------------------------------
    # Completions
    # ------------------------------------------------------------------
    async def chat(
        self,
        messages: list[dict],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        """Chat completion.  Returns the content string (may be empty).

        With *json_mode* the request uses Groq's JSON object mode; the
        messages must mention JSON for the API to accept it.
        """
        kwargs: dict = {
            "model": model or self._model,
            "messages": messages,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        resp = await self._client.chat.completions.create(**kwargs)
        return resp.choices[0].message.content or ""
