"""
Reasoning Oracle

Opaque, fallible function: (instruction, context payload) -> raw structured
response. The response is returned as parsed JSON and validated by the
planner; this module only distinguishes "could not reach the model" from
"the model did not answer with JSON".
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

from langchain_core.exceptions import OutputParserException
from langchain_core.output_parsers import JsonOutputParser
from langchain_core.prompts import ChatPromptTemplate

from autopilot.ai_core.prompts.planning import (
    PLANNING_SYSTEM_PROMPT,
    PLANNING_USER_PROMPT_TEMPLATE,
)
from autopilot.config import get_settings
from autopilot.exceptions import OracleContractViolation, OracleUnavailableError

logger = logging.getLogger(__name__)


class ReasoningOracle(Protocol):
    async def generate(self, prompt: str, context: Dict[str, Any]) -> Any: ...


class LLMOracle:
    """Reasoning oracle backed by a chat model behind the SAP gen_ai_hub proxy."""

    def __init__(self, llm=None, timeout: Optional[float] = None):
        config = get_settings()
        if llm is None:
            from gen_ai_hub.proxy.langchain.openai import ChatOpenAI
            from gen_ai_hub.proxy.core.proxy_clients import get_proxy_client

            self.proxy_client = get_proxy_client("gen-ai-hub")
            llm = ChatOpenAI(
                proxy_model_name=config.openai_model,
                proxy_client=self.proxy_client,
                temperature=config.temperature,
            )
        self.llm = llm
        self.timeout = timeout if timeout is not None else config.oracle_timeout_seconds
        self.prompt = ChatPromptTemplate.from_messages(
            [
                ("system", PLANNING_SYSTEM_PROMPT),
                ("human", PLANNING_USER_PROMPT_TEMPLATE),
            ]
        )
        logger.info("LLMOracle initialized")

    async def generate(self, prompt: str, context: Dict[str, Any]) -> Any:
        """
        Ask the model for a modification plan.

        Args:
            prompt: The instruction to fulfil
            context: Template variables describing the repository

        Returns:
            Parsed JSON response (shape is validated by the caller)

        Raises:
            OracleContractViolation: If the answer is not a JSON document
            OracleUnavailableError: If the model call fails or times out
        """
        try:
            response = await asyncio.wait_for(
                (self.prompt | self.llm).ainvoke({**context, "instruction": prompt}),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Reasoning oracle call timed out after {self.timeout}s")
            raise OracleUnavailableError(
                f"Reasoning oracle call timed out after {self.timeout}s"
            ) from e
        except Exception as e:
            logger.error(f"Reasoning oracle call failed: {e}", exc_info=True)
            raise OracleUnavailableError(f"Reasoning oracle call failed: {e}") from e

        try:
            return JsonOutputParser().parse(response.content)
        except OutputParserException as e:
            logger.warning(f"Oracle response is not valid JSON: {e}")
            raise OracleContractViolation(f"Oracle response is not valid JSON: {e}") from e
