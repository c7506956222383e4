from __future__ import annotations

from db.store import ProjectStore
from genai.client import GenerationClient
from genai.config import load_genai_config
from genai.credentials import CredentialProvider, EnvCredentialProvider
from .orchestrator import PipelineOrchestrator


def build_orchestrator(
    credentials: CredentialProvider | None = None,
    store: ProjectStore | None = None,
) -> PipelineOrchestrator:
    credentials = credentials or EnvCredentialProvider()
    client = GenerationClient(load_genai_config(api_key=credentials.api_key))
    return PipelineOrchestrator(
        client,
        store or ProjectStore(),
        credentials=credentials,
    )
