import asyncio
from typing import Optional

from mistralai import Mistral


class MistralAPIError(RuntimeError):
    """Upstream completion failure; status_code is the HTTP status when known."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MistralEngine:
    """
    Thin async wrapper around the official Mistral SDK.

    The SDK client is synchronous, so calls run in a worker thread and are
    bounded by asyncio.wait_for().
    """

    def __init__(self, api_key: Optional[str] = None, client=None):
        self.api_key = api_key
        self.client = client
        if self.client is None and self.api_key:
            self.client = Mistral(api_key=self.api_key)

    async def generate_text_async(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str = "mistral-large-latest",
        max_tokens: int = 1000,
        temperature: float = 0.7,
        timeout: int = 30
    ) -> str:
        """
        Generate plain text from a system/user prompt pair.

        Raises:
            ValueError: no API key configured
            MistralAPIError: timeout or upstream error (status_code carried over)
        """
        if not self.client:
            raise ValueError("Mistral API key not configured")

        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self.client.chat.complete,
                    model=model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt}
                    ],
                    max_tokens=max_tokens,
                    temperature=temperature
                ),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            raise MistralAPIError(f"Mistral API call timed out after {timeout}s")
        except Exception as e:
            raise MistralAPIError(f"Mistral API error: {str(e)}", getattr(e, "status_code", None))

        if not response or not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()
