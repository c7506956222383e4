from .client import GenerationClient, load_prompts
from .config import GenAIConfig, load_genai_config
from .credentials import CredentialProvider, EnvCredentialProvider, StaticCredentialProvider
from .errors import GenAIError, MissingCredentialError

__all__ = [
    "GenerationClient",
    "GenAIConfig",
    "GenAIError",
    "MissingCredentialError",
    "CredentialProvider",
    "EnvCredentialProvider",
    "StaticCredentialProvider",
    "load_genai_config",
    "load_prompts",
]
