# Langfuse integration
from typing import Optional, Type, Union

from langfuse import Langfuse
from langfuse.decorators import observe, langfuse_context
from pydantic import BaseModel
import structlog

from insight_worker.domain.ports import InferenceService, ModelSize

logger = structlog.get_logger(__name__)


class TracedInference(InferenceService):
    """Wraps an inference service so every call becomes a Langfuse generation"""

    def __init__(self, inner: InferenceService, public_key: str, secret_key: str, host: str):
        self.inner = inner
        self.langfuse = Langfuse(public_key=public_key, secret_key=secret_key, host=host)
        langfuse_context.configure(public_key=public_key, secret_key=secret_key, host=host)

    @observe(name="inference", as_type="generation")
    async def infer(
        self,
        prompt: str,
        *,
        schema: Optional[Type[BaseModel]] = None,
        temperature: float = 0.7,
        model_size: ModelSize = ModelSize.SMALL,
    ) -> Union[BaseModel, str]:
        langfuse_context.update_current_observation(
            input=prompt,
            model_parameters={"temperature": temperature},
            metadata={
                "model_size": model_size.value,
                "schema": schema.__name__ if schema else None,
            }
        )

        reply = await self.inner.infer(
            prompt, schema=schema, temperature=temperature, model_size=model_size
        )

        langfuse_context.update_current_observation(
            output=reply.model_dump(mode="json") if isinstance(reply, BaseModel) else reply
        )
        return reply

    def flush(self):
        langfuse_context.flush()
        self.langfuse.flush()
