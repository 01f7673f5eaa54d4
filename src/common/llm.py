import warnings
from typing import Any

import litellm

warnings.filterwarnings("ignore", message="Pydantic serializer warnings")
litellm.drop_params = True


async def acompletion(
    model: str,
    messages: list[dict],
    api_key: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 4096,
    **kwargs,
) -> Any:
    params = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
        **kwargs,
    }
    if api_key:
        params["api_key"] = api_key

    return await litellm.acompletion(**params)


async def acomplete_text(model: str, prompt: str, api_key: str | None = None, **kwargs) -> str:
    response = await acompletion(
        model=model,
        messages=[{"role": "user", "content": prompt}],
        api_key=api_key,
        **kwargs,
    )
    content = response.choices[0].message.content
    return content or ""
