"""HuggingFace-style text generation inference providers."""

from typing import Any

from providers.base import GenerationOptions, Provider


class InferenceProvider(Provider):
    """POST {inputs, parameters} and read generated_text."""

    def build_payload(self, prompt: str, options: GenerationOptions) -> dict[str, Any]:
        return {
            "inputs": prompt,
            "parameters": {
                "max_new_tokens": options.max_tokens or self.config.max_tokens,
                "temperature": (
                    options.temperature if options.temperature is not None else self.config.temperature
                ),
                "return_full_text": False,
            },
        }

    def extract_text(self, body: Any) -> str:
        # The API answers with a list for single inputs and a dict for some models
        if isinstance(body, list):
            body = body[0]
        return body["generated_text"]
