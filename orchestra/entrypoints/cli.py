from __future__ import annotations

import argparse
import asyncio
import sys
import uuid
from typing import List, Optional

from orchestra.agents.registry import AgentRegistry
from orchestra.agents.specialist import SpecialistAgent
from orchestra.schemas.messages import Task
from orchestra.telemetry.logging import setup_logging
from orchestra.tools.interaction import HumanInTheLoop, Question
from orchestra.tools.notes import NoteBook, note_tools
from orchestra.utils.cache import MemoryCache
from orchestra.utils.circuit_breaker import CircuitBreaker
from orchestra.utils.credentials import load_credentials
from orchestra.utils.execution_mode import MODES, ExecutionModeManager
from orchestra.utils.llm_clients import ClientPool, build_llm_client
from orchestra.utils.retry import create_agent_retry_strategy
from orchestra.utils.settings import AppConfig, load_config
from orchestra.workflows.orchestrator import Orchestrator


def build_client_pool(config: AppConfig) -> ClientPool:
    def factory(key: str):
        agent_config = config.agents.get(key)
        model = agent_config.model if agent_config and agent_config.model else config.llm.model
        return build_llm_client(config.llm.provider, model, config.llm.temperature)

    return ClientPool(factory)


def _agent_options(config: AppConfig, response_cache: Optional[MemoryCache]) -> dict:
    return {
        "max_history": config.history.max_history,
        "max_rate_limit_retries": config.retry.max_rate_limit_retries,
        "base_delay": config.retry.base_delay,
        "max_delay": config.retry.max_delay,
        "retry_strategy": create_agent_retry_strategy(
            config.retry.strategy_max_attempts, config.retry.base_delay, config.retry.max_delay
        ),
        "response_cache": response_cache,
    }


def build_agents(config: AppConfig, pool: ClientPool, notebook: NoteBook | None = None) -> AgentRegistry:
    notebook = notebook or NoteBook()
    response_cache = (
        MemoryCache(config.cache.response_max_size, config.cache.response_ttl)
        if config.cache.response_enabled
        else None
    )
    registry = AgentRegistry()
    for name, agent_config in config.agents.items():
        registry.register(
            SpecialistAgent(
                name,
                agent_config.description,
                prompt_path=agent_config.prompt_path,
                system_prompt=None if agent_config.prompt_path else f"You are the {name} agent. {agent_config.description}",
                client_pool=pool,
                pool_key=name if agent_config.model else "default",
                tools=note_tools(notebook),
                capabilities=agent_config.capabilities,
                limitations=agent_config.limitations,
                max_tokens=agent_config.max_tokens or config.llm.max_tokens,
                temperature=agent_config.temperature if agent_config.temperature is not None else config.llm.temperature,
                timeout=agent_config.timeout,
                max_iterations=agent_config.max_iterations,
                **_agent_options(config, response_cache),
            )
        )
    return registry


def build_orchestrator(
    config: AppConfig,
    pool: ClientPool | None = None,
    hitl: HumanInTheLoop | None = None,
) -> Orchestrator:
    pool = pool or build_client_pool(config)
    registry = build_agents(config, pool)
    workflow = config.workflow
    breaker = config.circuit_breaker
    return Orchestrator(
        registry,
        client_pool=pool,
        max_tokens=config.llm.max_tokens,
        temperature=config.llm.temperature,
        checkpoint_interval=workflow.checkpoint_interval,
        circuit_breaker=CircuitBreaker(
            breaker.failure_threshold, breaker.success_threshold, breaker.reset_timeout, breaker.failure_window
        ),
        routing_cache=MemoryCache(config.cache.routing_max_size, config.cache.routing_ttl),
        hitl=hitl,
        execution_mode=ExecutionModeManager(workflow.execution_mode),
        max_decomposition_depth=workflow.max_decomposition_depth,
        max_concurrency=workflow.max_concurrency,
        step_timeout=workflow.step_timeout,
        max_subtasks=workflow.max_subtasks,
        **_agent_options(config, None),
    )


async def _ask_on_console(questions: List[Question]) -> List[str]:
    answers = []
    for question in questions:
        hint = f" [{' / '.join(question.options)}]" if question.options else ""
        answer = await asyncio.to_thread(input, f"{question.question}{hint} ")
        answers.append(answer.strip() or (question.options[0] if question.options else ""))
    return answers


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Route a task through the orchestrator and its specialist agents.")
    parser.add_argument("task", help="Task for the agents.")
    parser.add_argument("--env", default="base", help="Config environment (base, dev, prod, ...).")
    parser.add_argument("--config-dir", default="configs", help="Directory holding <env>.yaml files.")
    parser.add_argument("--mode", choices=MODES, help="Execution mode override.")
    parser.add_argument("--provider", help="LLM provider override (openai, deepseek, echo).")
    parser.add_argument("--credentials", default="config.yml", help="Optional file with provider API keys.")
    parser.add_argument("--interactive", action="store_true", help="Ask clarifying questions on the console.")
    args = parser.parse_args(argv)

    config = load_config(args.env, args.config_dir)
    setup_logging(config.logging.level, config.logging.file)
    load_credentials(args.credentials)
    if args.mode:
        config.workflow.execution_mode = args.mode
    if args.provider:
        config.llm.provider = args.provider

    hitl = HumanInTheLoop(ask_user=_ask_on_console if args.interactive else None)
    pool = build_client_pool(config)
    orchestrator = build_orchestrator(config, pool, hitl=hitl)
    task = Task(id=str(uuid.uuid4()), prompt=args.task)
    result = asyncio.run(orchestrator.run(task))
    pool.evict_idle()

    print(result.output)
    for error in result.errors:
        source = f" {error.agent}" if error.agent else ""
        print(f"[{error.code}]{source}: {error.message}", file=sys.stderr)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
