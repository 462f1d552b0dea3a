import logging
import os
from typing import Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

from quality_engine.config import DEFAULT_MODEL

logger = logging.getLogger(__name__)

QUALITY_SYSTEM_PROMPT = "You are a helpful assistant that analyzes code quality and provides recommendations."


class AIClientError(Exception):
    """Custom exception for AI completion errors"""
    pass


class LangChainCompletionClient:
    """Text-in, text-out completion over an OpenAI chat model."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 1500,
        system_prompt: str = QUALITY_SYSTEM_PROMPT,
        llm=None,
    ):
        self.model = model
        self.system_prompt = system_prompt

        if llm is not None:
            self.llm = llm
            return

        api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise AIClientError("OpenAI API key not found. Please set OPENAI_API_KEY environment variable.")

        try:
            logger.info(f"Initializing ChatOpenAI with model {model}")
            self.llm = ChatOpenAI(
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                api_key=SecretStr(api_key),
            )
        except Exception as e:
            logger.error(f"Failed to initialize ChatOpenAI: {str(e)}")
            raise AIClientError(f"Failed to initialize ChatOpenAI: {str(e)}")

    async def invoke(self, prompt: str) -> str:
        """Send one prompt and return the raw response text."""
        messages = [SystemMessage(content=self.system_prompt), HumanMessage(content=prompt)]
        logger.debug(f"AI request to {self.model}: {prompt[:150]}")
        try:
            result = await self.llm.ainvoke(messages)
        except Exception as e:
            logger.error(f"AI call failed with model {self.model}: {str(e)}")
            raise AIClientError(f"AI call failed: {str(e)}") from e

        content = result.content if hasattr(result, "content") else result
        if not isinstance(content, str):
            content = str(content)
        logger.debug(f"AI response from {self.model}: {len(content)} characters")
        return content.strip()
