"""Runtime messages exchanged with the popup and the page-context agent.

Messages form a tagged union on ``type``. ``MessageRouter.dispatch`` looks the
handler up by message class, so adding a message kind means adding one model
and one table entry.
"""

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Annotated, Any, Literal

from pydantic import Field, TypeAdapter

from logeasy.capture.models import CamelModel, CaptureMessage

if TYPE_CHECKING:
    from logeasy.service import CaptureService

logger = logging.getLogger(__name__)


class GetNetworkData(CamelModel):
    type: Literal["get_network_data"] = "get_network_data"


class ClearNetworkData(CamelModel):
    type: Literal["clear_network_data"] = "clear_network_data"


class EnvInfo(CamelModel):
    type: Literal["env_info"] = "env_info"
    data: dict[str, Any]


class GetCachedEnvInfo(CamelModel):
    type: Literal["get_cached_env_info"] = "get_cached_env_info"


class ResponseCaptured(CamelModel):
    type: Literal["response_captured"] = "response_captured"
    capture: CaptureMessage


class GetSessionSummary(CamelModel):
    type: Literal["get_session_summary"] = "get_session_summary"
    domain: str


RuntimeMessage = Annotated[
    GetNetworkData | ClearNetworkData | EnvInfo | GetCachedEnvInfo | ResponseCaptured | GetSessionSummary,
    Field(discriminator="type"),
]

_MESSAGE_ADAPTER: TypeAdapter[RuntimeMessage] = TypeAdapter(RuntimeMessage)


def parse_message(raw: object) -> RuntimeMessage:
    """Validate a raw message dict into its concrete type.

    Raises:
        pydantic.ValidationError: If ``type`` is missing or unknown, or fields are invalid.
    """
    return _MESSAGE_ADAPTER.validate_python(raw)


class MessageRouter:
    """Dispatches runtime messages to the capture service."""

    def __init__(self, service: "CaptureService") -> None:
        self._service = service
        self._handlers: dict[type[CamelModel], Callable[[Any], dict[str, Any]]] = {
            GetNetworkData: self._get_network_data,
            ClearNetworkData: self._clear_network_data,
            EnvInfo: self._env_info,
            GetCachedEnvInfo: self._get_cached_env_info,
            ResponseCaptured: self._response_captured,
            GetSessionSummary: self._get_session_summary,
        }

    def dispatch(self, message: RuntimeMessage) -> dict[str, Any]:
        handler = self._handlers[type(message)]
        logger.debug("Dispatching %s", message.type)
        return handler(message)

    def _get_network_data(self, _: GetNetworkData) -> dict[str, Any]:
        return {"data": [r.to_json_dict() for r in self._service.get_all_records()]}

    def _clear_network_data(self, _: ClearNetworkData) -> dict[str, Any]:
        self._service.clear_all()
        return {"success": True}

    def _env_info(self, message: EnvInfo) -> dict[str, Any]:
        self._service.cache_env_info(message.data)
        return {"success": True}

    def _get_cached_env_info(self, _: GetCachedEnvInfo) -> dict[str, Any]:
        return {"data": self._service.env_info}

    def _response_captured(self, message: ResponseCaptured) -> dict[str, Any]:
        outcome = self._service.ingest_capture(message.capture)
        return {"success": True, "outcome": outcome.to_json_dict()}

    def _get_session_summary(self, message: GetSessionSummary) -> dict[str, Any]:
        summary = self._service.summarize(message.domain)
        return {"data": summary.to_json_dict() if summary is not None else None}
