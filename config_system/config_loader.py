"""
Configuration loading and validation for the dealflow orchestrator.
YAML files validated with pydantic models, cached per name.
"""
import yaml
import os
from typing import Dict, Any, List, Optional
from pathlib import Path
from pydantic import BaseModel, Field, ValidationError

from dealflow.orchestration.waves import MAX_ANALYSTS, SchedulerSettings, SchedulerTimeouts
from dealflow.reconcile.evidence import DecisionPolicy
from dealflow.runtime.rate_limit import RateLimitSettings
from dealflow.state.models import WorkerRole


WORKER_ROLES = (WorkerRole.ANALYST, WorkerRole.SYNTHESIS, WorkerRole.DECISION)


class ModelConfig(BaseModel):
    """Configuration for LangChain chat models - fully generic."""
    name: str
    provider: str  # e.g., "OpenAI", "Anthropic", "Ollama"
    model_name: str
    parameters: Dict[str, Any] = {}
    credentials: Dict[str, str] = {}


class WorkerConfig(BaseModel):
    """Configuration for one worker role."""
    name: str
    description: str = ""
    llm: str
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)


class PromptsConfig(BaseModel):
    """Prompts for a worker role using LangChain message types."""
    system_message: str
    human_message_template: str
    ai_message_prefix: Optional[str] = None


class AnalystConfig(BaseModel):
    specialization: str


class CollaboratorConfig(BaseModel):
    """One external evidence source."""
    name: str
    kind: str  # "tavily" or "deal_terms"
    stages: List[str] = ["seed"]
    parameters: Dict[str, Any] = {}
    credentials: Dict[str, str] = {}


class PipelineSettingsConfig(BaseModel):
    """Configuration for pipeline-level settings."""
    log_level: str = "INFO"
    data_directory: str = "data/deals"
    lock_ttl_seconds: float = 900.0
    evidence_snapshot_limit: int = 25
    max_gap_questions: int = 5
    gap_results_per_question: int = 2


class PipelineConfig(BaseModel):
    """Configuration for the whole screening pipeline."""
    name: str
    description: str = ""
    analysts: List[AnalystConfig] = Field(min_length=1, max_length=MAX_ANALYSTS)
    timeouts: SchedulerTimeouts = Field(default_factory=SchedulerTimeouts)
    decision_policy: DecisionPolicy = Field(default_factory=DecisionPolicy)
    settings: PipelineSettingsConfig = Field(default_factory=PipelineSettingsConfig)
    collaborators: List[CollaboratorConfig] = []

    def scheduler_settings(self) -> SchedulerSettings:
        return SchedulerSettings(
            analysts=[analyst.specialization for analyst in self.analysts],
            timeouts=self.timeouts,
            decision_policy=self.decision_policy,
            evidence_snapshot_limit=self.settings.evidence_snapshot_limit,
            max_gap_questions=self.settings.max_gap_questions,
            gap_results_per_question=self.settings.gap_results_per_question,
        )


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


def expand_credentials(credentials: Dict[str, str], owner: str) -> Dict[str, str]:
    """Resolve ``${ENV_VAR}`` credential references."""
    expanded = {}
    for key, value in credentials.items():
        if value.startswith("${") and value.endswith("}"):
            env_var = value[2:-1]
            env_value = os.getenv(env_var)
            if not env_value:
                raise ConfigValidationError(f"Environment variable {env_var} not set for {owner} credential {key}")
            expanded[key] = env_value
        else:
            expanded[key] = value
    return expanded


class ConfigLoader:
    """Loads and validates configuration files."""

    def __init__(self, config_root: str = "./config"):
        self.config_root = Path(config_root)
        self._models_cache: Dict[str, ModelConfig] = {}
        self._workers_cache: Dict[str, WorkerConfig] = {}
        self._prompts_cache: Dict[str, PromptsConfig] = {}
        self._pipeline: Optional[PipelineConfig] = None

    def _read_yaml(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Invalid YAML in {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigValidationError(f"Expected a mapping at the top of {path}")
        return data

    def validate_config_structure(self) -> bool:
        """Validate that required config directories and files exist."""
        for dir_path in (self.config_root / "models", self.config_root / "workers"):
            if not dir_path.exists():
                raise ConfigValidationError(f"Required config directory missing: {dir_path}")

        if not list((self.config_root / "models").glob("*.yaml")):
            raise ConfigValidationError("No model configuration files found in config/models/")

        return True

    def load_model_config(self, model_name: str) -> ModelConfig:
        """Load and validate model configuration."""
        if model_name in self._models_cache:
            return self._models_cache[model_name]

        model_path = self.config_root / "models" / f"{model_name}.yaml"
        if not model_path.exists():
            raise ConfigValidationError(f"Model config not found: {model_path}")

        try:
            model_config = ModelConfig(**self._read_yaml(model_path))
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid model config in {model_path}: {e}")
        self._models_cache[model_name] = model_config
        return model_config

    def load_worker_config(self, role: str) -> WorkerConfig:
        """Load and validate a worker role configuration."""
        if role in self._workers_cache:
            return self._workers_cache[role]

        worker_path = self.config_root / "workers" / role / "worker.yaml"
        if not worker_path.exists():
            raise ConfigValidationError(f"Worker config not found: {worker_path}")

        try:
            worker_config = WorkerConfig(**self._read_yaml(worker_path))
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid worker config in {worker_path}: {e}")

        # Referenced model must exist
        self.load_model_config(worker_config.llm)

        self._workers_cache[role] = worker_config
        return worker_config

    def load_prompts_config(self, role: str) -> PromptsConfig:
        """Load and validate prompts for a worker role."""
        if role in self._prompts_cache:
            return self._prompts_cache[role]

        prompts_path = self.config_root / "workers" / role / "prompts.yaml"
        if not prompts_path.exists():
            raise ConfigValidationError(f"Prompts config not found: {prompts_path}")

        try:
            prompts_config = PromptsConfig(**self._read_yaml(prompts_path))
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid prompts config in {prompts_path}: {e}")

        for placeholder in ("{instruction}", "{context}"):
            if placeholder not in prompts_config.human_message_template:
                raise ConfigValidationError(
                    f"Worker '{role}': human_message_template must contain {placeholder}"
                )

        self._prompts_cache[role] = prompts_config
        return prompts_config

    def load_pipeline_config(self) -> PipelineConfig:
        """Load and validate pipeline configuration."""
        if self._pipeline is not None:
            return self._pipeline

        pipeline_path = self.config_root / "pipeline.yaml"
        if not pipeline_path.exists():
            raise ConfigValidationError(f"Pipeline config not found: {pipeline_path}")

        config_data = self._read_yaml(pipeline_path)
        if 'pipeline' not in config_data:
            raise ConfigValidationError("Pipeline config must have a 'pipeline' section")

        try:
            self._pipeline = PipelineConfig(**config_data['pipeline'])
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid pipeline config in {pipeline_path}: {e}")

        known_kinds = {"tavily", "deal_terms"}
        for collaborator in self._pipeline.collaborators:
            if collaborator.kind not in known_kinds:
                raise ConfigValidationError(
                    f"Collaborator '{collaborator.name}' has unknown kind '{collaborator.kind}'"
                )
        return self._pipeline

    def list_available_models(self) -> List[str]:
        """List all available model configurations."""
        return sorted(f.stem for f in (self.config_root / "models").glob("*.yaml"))

    def list_available_workers(self) -> List[str]:
        """List all available worker role configurations."""
        workers_dir = self.config_root / "workers"
        if not workers_dir.exists():
            return []
        return sorted(d.name for d in workers_dir.iterdir() if d.is_dir())

    def validate_all_configs(self) -> bool:
        """Validate all configuration files."""
        try:
            self.validate_config_structure()

            for model_name in self.list_available_models():
                self.load_model_config(model_name)

            for role in WORKER_ROLES:
                self.load_worker_config(role.value)
                self.load_prompts_config(role.value)

            self.load_pipeline_config()
            return True

        except ConfigValidationError:
            raise
        except Exception as e:
            raise ConfigValidationError(f"Unexpected error during validation: {e}")


def validate_config(config_root: str = "./config") -> bool:
    """Validate configuration and raise exception if invalid."""
    loader = ConfigLoader(config_root)
    return loader.validate_all_configs()
