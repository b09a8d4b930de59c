"""Answer generation over retrieved context.

The generator appends the user prompt to the conversation memory, turns the
memory into chat messages with a prompting strategy and makes a single call
to the language model. There is no retry: one gateway failure ends the call.
"""
from enum import Enum
from typing import Callable, Dict, List, Optional
import structlog

from ragdemo import config
from ragdemo.cancellation import CancellationToken, run_cancellable
from ragdemo.errors import GenerationFailed, InvalidConfig, LLMUnavailable
from ragdemo.gateways import LLMGateway
from ragdemo.rag.context import ConversationMemory, Role

logger = structlog.get_logger()

Messages = List[Dict[str, str]]
PromptStrategy = Callable[[ConversationMemory], Messages]

SYSTEM_INSTRUCTIONS = (
    "You are a helpful assistant answering questions about a document. "
    "Earlier messages contain excerpts retrieved from it, most relevant first. "
    "Base your answer on them when they are relevant, and say so when they "
    "do not contain the answer."
)


def _turns(memory: ConversationMemory) -> Messages:
    return [
        {"role": entry.role.value, "content": entry.content}
        for entry in memory
        if entry.role is not Role.CONTEXT
    ]


def conversational_prompt(memory: ConversationMemory) -> Messages:
    """Context entries become assistant messages in the chat history."""
    messages = [{"role": "system", "content": SYSTEM_INSTRUCTIONS}]
    for entry in memory:
        role = "assistant" if entry.role is Role.CONTEXT else entry.role.value
        messages.append({"role": role, "content": entry.content})
    return messages


def stuffed_prompt(memory: ConversationMemory) -> Messages:
    """Context entries are numbered into a single system message."""
    excerpts = [
        f"[Excerpt {i}]\n{entry.content.strip()}"
        for i, entry in enumerate(memory.context_entries(), 1)
    ]
    system_content = SYSTEM_INSTRUCTIONS
    if excerpts:
        system_content += "\n\nKNOWLEDGE BASE CONTEXT:\n" + "\n\n".join(excerpts)
    return [{"role": "system", "content": system_content}] + _turns(memory)


PROMPT_STRATEGIES: Dict[str, PromptStrategy] = {
    "conversational": conversational_prompt,
    "stuffed": stuffed_prompt,
}


class GeneratorState(str, Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"


def _validate_temperature(temperature: float) -> None:
    if not 0.0 <= temperature <= 1.0:
        raise InvalidConfig(f"temperature must be within [0, 1], got {temperature!r}")


class AnswerGenerator:
    """Generates answers from conversation memory with one LLM call."""

    def __init__(self, llm: LLMGateway, strategy: str = None):
        """Initialize the answer generator.

        Args:
            llm: Language model gateway
            strategy: Prompting strategy name (default from config)

        Raises:
            InvalidConfig: If the strategy name is unknown
        """
        strategy = strategy or config.PROMPT_STRATEGY
        if strategy not in PROMPT_STRATEGIES:
            raise InvalidConfig(
                f"Unknown prompt strategy {strategy!r}; "
                f"choose from {sorted(PROMPT_STRATEGIES)}"
            )
        self.llm = llm
        self.strategy_name = strategy
        self.strategy = PROMPT_STRATEGIES[strategy]
        self.state = GeneratorState.IDLE

    async def _complete(
        self,
        messages: Messages,
        temperature: float,
        token: Optional[CancellationToken],
        timeout: Optional[float],
    ) -> str:
        self.state = GeneratorState.AWAITING_RESPONSE
        try:
            response = await run_cancellable(
                self.llm.complete(messages, temperature),
                token,
                timeout,
                operation="generation",
            )
        except LLMUnavailable as e:
            logger.error("generation_failed", error=str(e))
            raise GenerationFailed(f"Language model call failed: {e}") from e
        finally:
            self.state = GeneratorState.IDLE

        if not response or not response.strip():
            logger.error("empty_llm_response", message_count=len(messages))
            raise GenerationFailed("Empty response from language model")

        return response

    async def generate(
        self,
        memory: ConversationMemory,
        prompt: str,
        temperature: float = None,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Answer ``prompt`` given the context and turns held in ``memory``.

        Args:
            memory: Conversation memory; the prompt is appended to it
            prompt: User prompt
            temperature: Sampling temperature in [0, 1] (default from config)
            token: Optional cancellation token
            timeout: Optional deadline in seconds

        Returns:
            The model's answer, never empty

        Raises:
            InvalidConfig: If temperature is out of range
            GenerationFailed: If the model call fails or returns nothing
            Cancelled: If the token fired or the deadline passed
        """
        temperature = config.TEMPERATURE if temperature is None else temperature
        _validate_temperature(temperature)

        memory.append(Role.USER, prompt)
        messages = self.strategy(memory)

        logger.info(
            "generation_started",
            strategy=self.strategy_name,
            context_entries=len(memory.context_entries()),
            message_count=len(messages),
            temperature=temperature,
        )

        answer = await self._complete(messages, temperature, token, timeout)

        logger.info("generation_completed", answer_length=len(answer))
        return answer

    async def translate(
        self,
        text: str,
        target_language: str = "Chinese",
        temperature: float = None,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Translate text with a single prompt, replying with the translation only."""
        temperature = config.TEMPERATURE if temperature is None else temperature
        _validate_temperature(temperature)

        prompt = (
            f"Translate the following text into {target_language}. Reply with "
            f"the translation only and nothing else. The text is:\n{text}"
        )
        messages = [{"role": "user", "content": prompt}]

        logger.info("translation_started", target_language=target_language, text_length=len(text))
        return await self._complete(messages, temperature, token, timeout)
