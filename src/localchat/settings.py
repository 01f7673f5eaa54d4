import logging

from pydantic import BaseModel, Field, ValidationError

from localchat.config import CONTEXT_SIZES, DEFAULT_CONTEXT_LENGTH, DEFAULT_OLLAMA_ENDPOINT
from localchat.errors import LocalChatError
from localchat.storage import MODEL_STORE_KEY, KeyValueStore

logger = logging.getLogger(__name__)


class SettingsError(LocalChatError):
    pass


class ModelInfo(BaseModel):
    name: str
    parameters: int | None = None
    context_length: int | None = None
    quantization: str | None = None
    format: str | None = None
    families: list[str] = Field(default_factory=list)
    description: str = ""


class ModelSettings(BaseModel):
    selected_model: str | None = None
    ollama_endpoint: str = DEFAULT_OLLAMA_ENDPOINT
    api_keys: dict[str, str] = Field(default_factory=dict)
    models_info: dict[str, ModelInfo] = Field(default_factory=dict)
    selected_context_size: int = DEFAULT_CONTEXT_LENGTH


def infer_context_length(family: str | None, parameters: int | None) -> int:
    family = (family or "").lower()
    parameters = parameters or 0

    if "llama" in family or "mistral" in family:
        if parameters >= 70_000_000_000:
            return 32768
        if parameters >= 13_000_000_000:
            return 16384
        if parameters >= 7_000_000_000:
            return 8192
        return DEFAULT_CONTEXT_LENGTH
    if "gemma" in family:
        return 8192 if parameters >= 7_000_000_000 else DEFAULT_CONTEXT_LENGTH
    if "mpt" in family:
        return 8192
    return DEFAULT_CONTEXT_LENGTH


class SettingsStore:
    """Model and provider preferences, persisted under the ``model-store`` key."""

    def __init__(self, backend: KeyValueStore | None = None):
        self._backend = backend
        self.settings = self._load()

    def _load(self) -> ModelSettings:
        if self._backend is None:
            return ModelSettings()
        data = self._backend.get(MODEL_STORE_KEY)
        if not data:
            return ModelSettings()
        try:
            return ModelSettings.model_validate(data)
        except ValidationError as e:
            logger.error(f"Discarding unreadable model settings: {e}")
            return ModelSettings()

    def _save(self, **changes) -> None:
        self.settings = self.settings.model_copy(update=changes)
        if self._backend is not None:
            self._backend.set(MODEL_STORE_KEY, self.settings.model_dump(mode="json"))

    @property
    def selected_model(self) -> str | None:
        return self.settings.selected_model

    @property
    def ollama_endpoint(self) -> str:
        return self.settings.ollama_endpoint

    @property
    def selected_context_size(self) -> int:
        return self.settings.selected_context_size

    def set_selected_model(self, model: str) -> None:
        self._save(selected_model=model)

    def set_endpoint(self, endpoint: str) -> None:
        endpoint = endpoint.strip().rstrip("/")
        if not endpoint:
            raise SettingsError("endpoint must not be empty")
        self._save(ollama_endpoint=endpoint)

    def set_api_key(self, provider: str, key: str) -> None:
        self._save(api_keys={**self.settings.api_keys, provider: key})

    def get_api_key(self, provider: str) -> str | None:
        return self.settings.api_keys.get(provider) or None

    def set_model_info(self, info: ModelInfo) -> None:
        self._save(models_info={**self.settings.models_info, info.name: info})

    def get_context_length(self, model: str | None) -> int:
        if not model or model not in self.settings.models_info:
            return DEFAULT_CONTEXT_LENGTH
        return self.settings.models_info[model].context_length or DEFAULT_CONTEXT_LENGTH

    def available_context_sizes(self, model: str | None) -> list[int]:
        limit = self.get_context_length(model)
        return [size for size in CONTEXT_SIZES if size <= limit]

    def set_selected_context_size(self, size: int) -> None:
        if int(size) < 1:
            raise SettingsError("context size must be a positive integer")
        self._save(selected_context_size=int(size))
