#!/usr/bin/env python3
"""
Configuration tests for the dealflow orchestrator.

Covers STATIC configuration validation (syntax, schema, references) and the
factories that turn configuration into collaborators. The shipped config/
tree is validated as well.
"""
import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import yaml

from config_system.config_loader import ConfigLoader, ConfigValidationError, expand_credentials, validate_config
from config_system.worker_factory import ModelRegistry, create_collaborators
from dealflow.collaborators.base import CollaboratorStage
from dealflow.collaborators.deal_terms import DealTermsCollaborator
from dealflow.collaborators.tavily import TavilySearchCollaborator

SHIPPED_CONFIG = Path(__file__).resolve().parent / "config"


def write_yaml(path: Path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f)


class ConfigTestCase(unittest.TestCase):
    """Builds a minimal valid config tree in a temporary directory."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_root = Path(self.temp_dir)

        write_yaml(self.config_root / "models" / "test_model.yaml", {
            "name": "test_model",
            "provider": "OpenAI",
            "model_name": "gpt-test",
            "parameters": {"temperature": 0.1},
            "credentials": {"api_key": "${DEALFLOW_TEST_KEY}"},
        })
        for role in ("analyst", "synthesis", "decision"):
            write_yaml(self.config_root / "workers" / role / "worker.yaml", {
                "name": role,
                "description": f"{role} worker",
                "llm": "test_model",
            })
            write_yaml(self.config_root / "workers" / role / "prompts.yaml", {
                "system_message": "You screen deals.",
                "human_message_template": "{instruction}\n\n{context}",
            })
        self.pipeline = {
            "name": "deal_screening",
            "analysts": [{"specialization": "market"}, {"specialization": "traction"}],
            "timeouts": {"worker_seconds": 90},
            "decision_policy": {"max_assumption_ratio": 0.4},
            "settings": {"evidence_snapshot_limit": 10},
            "collaborators": [
                {"name": "deal_terms", "kind": "deal_terms"},
                {"name": "web", "kind": "tavily", "stages": ["seed", "gap"],
                 "parameters": {"max_results": 3}, "credentials": {"api_key": "${DEALFLOW_TEST_TAVILY}"}},
            ],
        }
        self.write_pipeline()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_pipeline(self):
        write_yaml(self.config_root / "pipeline.yaml", {"pipeline": self.pipeline})

    def loader(self):
        return ConfigLoader(str(self.config_root))


class TestConfigLoader(ConfigTestCase):

    def test_valid_tree(self):
        self.assertTrue(self.loader().validate_all_configs())

    def test_pipeline_maps_to_scheduler_settings(self):
        settings = self.loader().load_pipeline_config().scheduler_settings()
        self.assertEqual(settings.analysts, ["market", "traction"])
        self.assertEqual(settings.timeouts.worker_seconds, 90)
        self.assertEqual(settings.timeouts.seed_seconds, 45)
        self.assertEqual(settings.decision_policy.max_assumption_ratio, 0.4)
        self.assertEqual(settings.evidence_snapshot_limit, 10)

    def test_listing(self):
        loader = self.loader()
        self.assertEqual(loader.list_available_models(), ["test_model"])
        self.assertEqual(loader.list_available_workers(), ["analyst", "decision", "synthesis"])

    def test_worker_referencing_missing_model(self):
        write_yaml(self.config_root / "workers" / "decision" / "worker.yaml", {"name": "decision", "llm": "ghost"})
        with self.assertRaises(ConfigValidationError):
            self.loader().load_worker_config("decision")

    def test_prompt_template_needs_placeholders(self):
        write_yaml(self.config_root / "workers" / "analyst" / "prompts.yaml", {
            "system_message": "x",
            "human_message_template": "{instruction} only",
        })
        with self.assertRaises(ConfigValidationError) as ctx:
            self.loader().load_prompts_config("analyst")
        self.assertIn("{context}", str(ctx.exception))

    def test_too_many_analysts(self):
        self.pipeline["analysts"] = [{"specialization": f"s{i}"} for i in range(7)]
        self.write_pipeline()
        with self.assertRaises(ConfigValidationError):
            self.loader().load_pipeline_config()

    def test_unknown_collaborator_kind(self):
        self.pipeline["collaborators"].append({"name": "crunch", "kind": "crunchbase"})
        self.write_pipeline()
        with self.assertRaises(ConfigValidationError):
            self.loader().load_pipeline_config()

    def test_missing_pipeline_section(self):
        write_yaml(self.config_root / "pipeline.yaml", {"analysts": []})
        with self.assertRaises(ConfigValidationError):
            self.loader().load_pipeline_config()

    def test_invalid_yaml(self):
        with open(self.config_root / "pipeline.yaml", "w", encoding="utf-8") as f:
            f.write("pipeline: [unclosed")
        with self.assertRaises(ConfigValidationError):
            self.loader().load_pipeline_config()

    def test_missing_models_directory(self):
        shutil.rmtree(self.config_root / "models")
        with self.assertRaises(ConfigValidationError):
            validate_config(str(self.config_root))


class TestCredentials(unittest.TestCase):

    def test_env_reference_is_expanded(self):
        with patch.dict(os.environ, {"DEALFLOW_TEST_KEY": "secret"}):
            self.assertEqual(expand_credentials({"api_key": "${DEALFLOW_TEST_KEY}"}, "test"), {"api_key": "secret"})

    def test_literal_values_pass_through(self):
        self.assertEqual(expand_credentials({"base_url": "http://localhost"}, "test"), {"base_url": "http://localhost"})

    def test_missing_env_var(self):
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ConfigValidationError):
                expand_credentials({"api_key": "${DEALFLOW_TEST_KEY}"}, "test")


class TestFactories(ConfigTestCase):

    def test_collaborators_grouped_by_stage(self):
        configs = self.loader().load_pipeline_config().collaborators
        with patch.dict(os.environ, {"DEALFLOW_TEST_TAVILY": "tvly-key"}):
            grouped = create_collaborators(configs)

        seed = grouped[CollaboratorStage.SEED]
        self.assertIsInstance(seed[0], DealTermsCollaborator)
        self.assertIsInstance(seed[1], TavilySearchCollaborator)
        self.assertIs(grouped[CollaboratorStage.GAP][0], seed[1])
        self.assertEqual(seed[1].max_results, 3)
        self.assertEqual(seed[1].name, "web")
        self.assertEqual(grouped[CollaboratorStage.BACKGROUND], [])

    def test_tavily_needs_api_key(self):
        self.pipeline["collaborators"][1]["credentials"] = {}
        self.write_pipeline()
        with self.assertRaises(ConfigValidationError):
            create_collaborators(self.loader().load_pipeline_config().collaborators)

    def test_unknown_provider(self):
        model = self.loader().load_model_config("test_model").model_copy(update={"provider": "NoSuchVendor"})
        with self.assertRaises(ConfigValidationError):
            ModelRegistry.create_llm(model)


class TestShippedConfig(unittest.TestCase):

    def test_shipped_config_is_valid(self):
        self.assertTrue(validate_config(str(SHIPPED_CONFIG)))

    def test_shipped_pipeline_defaults(self):
        pipeline = ConfigLoader(str(SHIPPED_CONFIG)).load_pipeline_config()
        self.assertEqual([a.specialization for a in pipeline.analysts], ["market", "competition", "traction"])
        self.assertEqual({c.kind for c in pipeline.collaborators}, {"deal_terms", "tavily"})


if __name__ == "__main__":
    unittest.main()
