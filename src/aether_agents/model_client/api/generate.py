"""Generate completions using an OpenAI-compatible model endpoint."""

from hopeit.app.api import event_api
from hopeit.app.context import EventContext
from hopeit.app.logger import app_extra_logger

from aether_agents.model_client.client import AsyncModelClient, ModelClientError
from aether_agents.model_client.models import CompletionRequest, CompletionResponse
from aether_agents.model_client.settings import SETTINGS_KEY, ModelClientSettings, merge_config

__steps__ = ["generate"]

__api__ = event_api(
    summary="aether_agents model client: generate",
    payload=(CompletionRequest, "Conversation and overrides"),
    responses={
        200: (CompletionResponse, "Completion result"),
        500: (str, "Provider error"),
    },
)

logger, extra = app_extra_logger()


async def generate(payload: CompletionRequest, context: EventContext) -> CompletionResponse:
    """Call the provider using defaults from settings and request overrides."""
    settings = context.settings(key=SETTINGS_KEY, datatype=ModelClientSettings)
    config = merge_config(settings, payload.config)
    api_key = settings.resolve_api_key(context.env)

    client = AsyncModelClient(
        base_url=settings.api_base,
        api_key=api_key,
        timeout_seconds=settings.timeout_seconds,
        default_headers=settings.extra_headers,
    )

    try:
        response = await client.complete(payload, config)
    except ModelClientError as exc:
        logger.error(
            context,
            "model_client_error",
            extra=extra(status=exc.status, error=exc.message, details=exc.details),
        )
        raise

    logger.info(
        context,
        "model_client_completion",
        extra=extra(model=response.model, finish_reason=response.finish_reason),
    )
    return response
