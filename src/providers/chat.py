"""OpenAI-compatible chat completion providers (Groq, OpenRouter, ...)."""

from typing import Any

from providers.base import GenerationOptions, Provider


class ChatCompletionsProvider(Provider):
    """POST {model, messages, temperature, max_tokens} and read choices[0]."""

    def build_payload(self, prompt: str, options: GenerationOptions) -> dict[str, Any]:
        payload = {
            "model": options.model or self.config.default_model,
            "messages": [
                {"role": "system", "content": self.config.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": (
                options.temperature if options.temperature is not None else self.config.temperature
            ),
            "max_tokens": options.max_tokens or self.config.max_tokens,
        }
        if options.extra.get("json_mode"):
            payload["response_format"] = {"type": "json_object"}
        return payload

    def extract_text(self, body: Any) -> str:
        return body["choices"][0]["message"]["content"]
