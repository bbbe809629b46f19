"""
Factories turning configuration into runtime objects:
chat models, role workers and evidence collaborators.
"""
import importlib
from typing import Dict, List
from langchain_core.language_models.base import BaseLanguageModel

from config_system.config_loader import (
    WORKER_ROLES,
    CollaboratorConfig,
    ConfigLoader,
    ConfigValidationError,
    ModelConfig,
    expand_credentials,
)
from core.worker import LangChainWorkerInvoker, Worker
from dealflow.collaborators.base import Collaborator, CollaboratorStage
from dealflow.collaborators.deal_terms import DealTermsCollaborator
from dealflow.collaborators.tavily import TavilySearchCollaborator
from dealflow.state.models import WorkerRole


class ModelRegistry:
    """Fully dynamic registry for any LangChain model provider."""

    @classmethod
    def create_llm(cls, model_config: ModelConfig) -> BaseLanguageModel:
        """Create a chat model from configuration using dynamic discovery."""
        provider_lowercase = model_config.provider.lower()
        class_name = f"Chat{model_config.provider}"
        try:
            # Package import must be lowercase
            module = importlib.import_module(f"langchain_{provider_lowercase}")
            llm_class = getattr(module, class_name)
        except ImportError as e:
            raise ConfigValidationError(
                f"Model provider '{model_config.provider}' requires additional dependencies. "
                f"Install with: pip install langchain-{provider_lowercase}\n"
                f"Error: {str(e)}"
            )
        except AttributeError as e:
            raise ConfigValidationError(
                f"Provider '{model_config.provider}' does not have expected class '{class_name}'. "
                f"Error: {str(e)}"
            )

        llm_params = {"model": model_config.model_name}
        llm_params.update(model_config.parameters)
        llm_params.update(expand_credentials(model_config.credentials, f"model '{model_config.name}'"))
        try:
            return llm_class(**llm_params)
        except Exception as e:
            raise ConfigValidationError(f"Failed to create LLM {model_config.name}: {str(e)}")


class WorkerFactory:
    """Creates role workers from configuration."""

    def __init__(self, config_loader: ConfigLoader):
        self.config_loader = config_loader
        self.model_registry = ModelRegistry()

    def create_worker(self, role: WorkerRole) -> Worker:
        worker_config = self.config_loader.load_worker_config(role.value)
        prompts_config = self.config_loader.load_prompts_config(role.value)
        model_config = self.config_loader.load_model_config(worker_config.llm)
        return Worker(
            config=worker_config,
            prompts=prompts_config,
            llm=self.model_registry.create_llm(model_config),
        )

    def create_invoker(self) -> LangChainWorkerInvoker:
        return LangChainWorkerInvoker({role: self.create_worker(role) for role in WORKER_ROLES})


def create_collaborator(config: CollaboratorConfig) -> Collaborator:
    if config.kind == "deal_terms":
        return DealTermsCollaborator()
    if config.kind == "tavily":
        credentials = expand_credentials(config.credentials, f"collaborator '{config.name}'")
        if "api_key" not in credentials:
            raise ConfigValidationError(f"Collaborator '{config.name}' needs an api_key credential")
        return TavilySearchCollaborator(api_key=credentials["api_key"], name=config.name, **config.parameters)
    raise ConfigValidationError(f"Unknown collaborator kind '{config.kind}'")


def create_collaborators(configs: List[CollaboratorConfig]) -> Dict[CollaboratorStage, List[Collaborator]]:
    """Instantiate collaborators once and group them by the stages they serve."""
    grouped: Dict[CollaboratorStage, List[Collaborator]] = {stage: [] for stage in CollaboratorStage}
    for config in configs:
        collaborator = create_collaborator(config)
        for stage in config.stages:
            try:
                grouped[CollaboratorStage(stage)].append(collaborator)
            except ValueError:
                raise ConfigValidationError(f"Collaborator '{config.name}' has unknown stage '{stage}'")
    return grouped
