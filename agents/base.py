"""
BidVet - Base Agent Configuration

Provides the LLM abstraction layer (OpenAI, Anthropic, Gemini), JSON output
validation, and classification of LLM failures.
"""

import json
import os
import logging
from typing import Optional
from crewai import LLM, Agent, Task

from config.settings import settings, LLMProvider
from services.exceptions import ParseError, classify_llm_error

logger = logging.getLogger("bidvet.agents")


def get_llm(
    provider: Optional[LLMProvider] = None,
    model: Optional[str] = None,
    temperature: Optional[float] = None
) -> LLM:
    """
    Get an LLM instance for the specified or configured provider.

    Args:
        provider: Override the configured provider
        model: Override the configured model
        temperature: Override the configured temperature

    Returns:
        Configured LLM instance for CrewAI
    """
    provider = provider or settings.llm_provider
    model = model or settings.default_model
    temperature = temperature if temperature is not None else settings.llm_temperature

    # CrewAI reads provider keys from the environment
    env_keys = {
        LLMProvider.OPENAI: ("OPENAI_API_KEY", settings.openai_api_key),
        LLMProvider.ANTHROPIC: ("ANTHROPIC_API_KEY", settings.anthropic_api_key),
        LLMProvider.GEMINI: ("GOOGLE_API_KEY", settings.google_api_key),
    }
    if provider not in env_keys:
        raise ValueError(f"Unsupported LLM provider: {provider}")

    env_name, api_key = env_keys[provider]
    if api_key:
        os.environ[env_name] = api_key

    prefix = f"{provider.value}/"
    return LLM(
        model=model if model.startswith(prefix) else f"{prefix}{model}",
        temperature=temperature
    )


# Default LLM instance using configured settings
default_llm = None


def get_default_llm() -> LLM:
    """Get the default LLM instance (lazy initialization)."""
    global default_llm
    if default_llm is None:
        default_llm = get_llm()
    return default_llm


# Common agent configurations
AGENT_VERBOSE = False


def validate_json_output(output: str, required_keys: list[str]) -> dict:
    """
    Validate and parse JSON output from an agent.

    Args:
        output: Raw output string from agent
        required_keys: Keys that must be present in the output

    Returns:
        Parsed JSON dict

    Raises:
        ParseError: If output is not valid JSON or missing required keys
    """
    output = str(output)

    # Agents sometimes wrap JSON in markdown code blocks
    if "```json" in output:
        start = output.find("```json") + 7
        end = output.find("```", start)
        output = output[start:end].strip()
    elif "```" in output:
        start = output.find("```") + 3
        end = output.find("```", start)
        output = output[start:end].strip()

    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON output: {e}") from e

    if not isinstance(data, dict):
        raise ParseError("Invalid JSON output: expected an object")

    missing = [key for key in required_keys if key not in data]
    if missing:
        raise ParseError(f"Missing required keys in output: {missing}")

    return data


def run_task(agent: Agent, task: Task, required_keys: list[str]) -> dict:
    """
    Execute a task and return its validated JSON.

    Raises:
        LLMError: Classified failure of the call or of its output
    """
    try:
        result = agent.execute_task(task)
    except Exception as e:
        classified = classify_llm_error(e)
        logger.warning(f"{agent.role} failed ({classified.code}): {classified.message}")
        raise classified from e

    return validate_json_output(result, required_keys)
