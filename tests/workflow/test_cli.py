import logging

import pytest

from orchestra.entrypoints.cli import build_agents, build_orchestrator, main
from orchestra.utils.llm_clients import ClientPool, EchoLLMClient
from orchestra.utils.settings import load_config

CONFIG = """
llm:
  provider: openai
  model: gpt-4o-mini
agents:
  coder:
    description: writes code
    capabilities: [python]
  tester:
    description: runs tests
    model: gpt-4o
workflow:
  max_concurrency: 2
  checkpoint_interval: 5
logging:
  level: WARNING
"""


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "base.yaml").write_text(CONFIG, encoding="utf-8")
    return tmp_path


@pytest.fixture(autouse=True)
def restore_logger():
    logger = logging.getLogger("orchestra")
    saved = (logger.level, logger.propagate, list(logger.handlers))
    yield
    logger.setLevel(saved[0])
    logger.propagate = saved[1]
    logger.handlers = saved[2]


def test_agents_are_built_from_config(config_dir):
    config = load_config("base", config_dir)

    registry = build_agents(config, ClientPool.of(EchoLLMClient()))

    assert registry.names() == ["coder", "tester"]
    coder = registry.get("coder")
    assert coder.get_system_prompt() == "You are the coder agent. writes code"
    assert coder.capabilities == ["python"]
    assert coder.pool_key == "default"
    assert registry.get("tester").pool_key == "tester"
    assert set(coder.tools.names()) == {"save_note", "read_notes"}


def test_orchestrator_is_wired_from_workflow_settings(config_dir):
    config = load_config("base", config_dir)

    orchestrator = build_orchestrator(config, ClientPool.of(EchoLLMClient()))

    assert orchestrator.plan_executor.max_concurrency == 2
    assert orchestrator.checkpoint_interval == 5
    assert orchestrator.execution_mode.mode == "execute"
    assert len(orchestrator.registry) == 2


def test_main_runs_a_task_with_the_echo_provider(config_dir, tmp_path, capsys):
    code = main(
        [
            "Say hello",
            "--config-dir", str(config_dir),
            "--provider", "echo",
            "--mode", "strict",
            "--credentials", str(tmp_path / "none.yml"),
        ]
    )

    out = capsys.readouterr().out
    assert code == 0
    assert "Say hello" in out
