"""
Ollama HTTP client.

Talks to the native Ollama API (``/api/generate``, ``/api/tags``,
``/api/show``). Streaming responses are returned unread so the caller can
consume the body chunk by chunk and close it when done.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field

from localchat.config import DEFAULT_OLLAMA_ENDPOINT
from localchat.errors import RequestFailed
from localchat.settings import ModelInfo, SettingsStore, infer_context_length

logger = logging.getLogger(__name__)


class OllamaModelDetails(BaseModel):
    parameter_size: str | None = None
    quantization_level: str | None = None
    format: str | None = None
    family: str | None = None
    families: list[str] | None = None


class OllamaModel(BaseModel):
    name: str
    modified_at: str | None = None
    size: int = 0
    digest: str = ""
    details: OllamaModelDetails = Field(default_factory=OllamaModelDetails)


def _context_length_from_model_info(model_info: dict[str, Any]) -> int | None:
    for key, value in model_info.items():
        if key.endswith(".context_length") and isinstance(value, int) and value > 0:
            return value
    return None


class OllamaClient:
    def __init__(
        self,
        endpoint: str = DEFAULT_OLLAMA_ENDPOINT,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.endpoint, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "OllamaClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _generate_payload(
        model: str, prompt: str, stream: bool, context_length: int | None
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": model, "prompt": prompt, "stream": stream}
        if context_length is not None:
            payload["context_length"] = context_length
            payload["options"] = {"num_ctx": context_length}
        return payload

    async def open_generate_stream(
        self, model: str, prompt: str, context_length: int | None = None
    ) -> httpx.Response:
        """
        Start a streaming generation and return the response with its body unread.

        Raises:
            RequestFailed: on transport errors or a non-2xx status. The response
                is closed before raising.
        """
        request = self._client.build_request(
            "POST",
            "/api/generate",
            json=self._generate_payload(model, prompt, True, context_length),
        )
        logger.debug(f"POST {request.url} model={model} context_length={context_length}")
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise RequestFailed(f"Request to {request.url} failed: {e}") from e

        if not response.is_success:
            detail = ""
            try:
                detail = (await response.aread()).decode("utf-8", errors="replace")[:500]
            except httpx.HTTPError as e:
                logger.debug(f"Could not read error body: {e}")
            finally:
                await response.aclose()
            message = f"Generation endpoint returned HTTP {response.status_code}"
            if detail:
                message = f"{message}: {detail}"
            raise RequestFailed(message, status_code=response.status_code)
        return response

    async def generate(self, model: str, prompt: str, context_length: int | None = None) -> str:
        try:
            resp = await self._client.post(
                "/api/generate",
                json=self._generate_payload(model, prompt, False, context_length),
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RequestFailed(
                f"Generation endpoint returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise RequestFailed(f"Request to {self.endpoint} failed: {e}") from e
        data = resp.json()
        return data.get("response") or ""

    async def list_models(self) -> list[OllamaModel]:
        try:
            resp = await self._client.get("/api/tags")
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise RequestFailed(f"Failed to fetch models: {e}") from e
        models = resp.json().get("models") or []
        return [OllamaModel.model_validate(m) for m in models]

    async def show_model(self, name: str) -> ModelInfo:
        try:
            resp = await self._client.post("/api/show", json={"name": name})
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise RequestFailed(f"Failed to get model info for {name}: {e}") from e

        data = resp.json()
        details = data.get("details") or {}
        model_info = data.get("model_info") or {}
        family = details.get("family") or data.get("family")
        parameters = model_info.get("general.parameter_count") or data.get("parameters")
        if not isinstance(parameters, int):
            parameters = None
        context_length = _context_length_from_model_info(model_info) or infer_context_length(
            family, parameters
        )
        families = details.get("families") or ([family] if family else [])
        return ModelInfo(
            name=name,
            parameters=parameters,
            context_length=context_length,
            quantization=details.get("quantization_level"),
            format=details.get("format"),
            families=families,
            description=data.get("system") or "",
        )

    async def health_check(self) -> dict:
        try:
            resp = await self._client.get("/api/tags", timeout=10.0)
        except httpx.HTTPError as e:
            return {"status": "unreachable", "endpoint": self.endpoint, "error": str(e)}
        if resp.status_code == 200:
            return {"status": "healthy", "endpoint": self.endpoint}
        return {
            "status": "unhealthy",
            "endpoint": self.endpoint,
            "error": f"HTTP {resp.status_code}",
        }


async def refresh_model_info(
    client: OllamaClient, settings: SettingsStore
) -> list[tuple[OllamaModel, ModelInfo | None]]:
    """List installed models and record what ``/api/show`` reports for each one."""
    rows = []
    for model in await client.list_models():
        try:
            info = await client.show_model(model.name)
        except RequestFailed as e:
            logger.warning(f"Could not read model info for {model.name}: {e}")
            rows.append((model, None))
            continue
        settings.set_model_info(info)
        rows.append((model, info))
    return rows
