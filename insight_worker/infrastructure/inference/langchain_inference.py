from typing import Dict, Optional, Type, Union
import structlog

from langchain.chat_models import init_chat_model
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage
from pydantic import BaseModel

from insight_worker.domain.ports import InferenceService, ModelSize

logger = structlog.get_logger(__name__)


def _with_temperature(model: BaseChatModel, temperature: float) -> BaseChatModel:
    if "temperature" in type(model).model_fields:
        return model.model_copy(update={"temperature": temperature})
    return model


def _message_text(message) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, list):
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content
        )
    return str(content)


class LangChainInference(InferenceService):
    """Inference over LangChain chat models, one per model size"""

    def __init__(self, models: Dict[ModelSize, BaseChatModel]):
        self.models = models

    @classmethod
    def from_settings(cls, settings) -> "LangChainInference":
        return cls({
            ModelSize.SMALL: init_chat_model(settings.small_model, model_provider=settings.llm_provider),
            ModelSize.LARGE: init_chat_model(settings.large_model, model_provider=settings.llm_provider),
        })

    async def infer(
        self,
        prompt: str,
        *,
        schema: Optional[Type[BaseModel]] = None,
        temperature: float = 0.7,
        model_size: ModelSize = ModelSize.SMALL,
    ) -> Union[BaseModel, str]:
        model = _with_temperature(self.models[model_size], temperature)
        messages = [HumanMessage(content=prompt)]

        logger.debug(
            "inference_call",
            model_size=model_size.value,
            temperature=temperature,
            schema=schema.__name__ if schema else None,
            prompt_chars=len(prompt)
        )

        if schema is not None:
            reply = await model.with_structured_output(schema).ainvoke(messages)
            if isinstance(reply, dict):
                reply = schema.model_validate(reply)
            return reply

        reply = await model.ainvoke(messages)
        return _message_text(reply).strip()
