from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class RunMode(str, Enum):
    PLAY = "play"
    SAVE = "save"
    CREATE = "create"


class FetchInterceptionStage(str, Enum):
    REQUEST = "Request"
    RESPONSE = "Response"


@dataclass
class MocksPattern:
    """URL glob plus the resource types it applies to (``"*"`` means all of them)."""

    url: str
    resources: list[str] | str = "*"


@dataclass
class FetchEvent:
    request_id: str
    request_url: str
    response_headers: list[dict[str, str]] | None = None
    response_status_code: int | None = None

    @classmethod
    def from_params(cls, params: dict[str, Any]) -> FetchEvent:
        request = dict(params.get("request", {}))
        status = params.get("responseStatusCode")
        headers = params.get("responseHeaders")
        return cls(
            request_id=str(params.get("requestId", "")),
            request_url=str(request.get("url", "")),
            response_headers=(None if headers is None else [dict(h) for h in headers]),
            response_status_code=(None if status is None else int(status)),
        )


@dataclass
class DumpResponse:
    response_code: int
    headers: dict[str, str]
    body: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "responseCode": self.response_code,
            "headers": self.headers,
            "body": self.body,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DumpResponse:
        return cls(
            response_code=int(data.get("responseCode", 200)),
            headers={str(k): str(v) for k, v in dict(data.get("headers", {})).items()},
            body=str(data.get("body", "")),
        )


@dataclass
class Dump:
    requests: dict[str, list[str]] = field(default_factory=dict)
    responses: dict[str, DumpResponse] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.requests and not self.responses

    def to_dict(self) -> dict[str, Any]:
        return {
            "requests": {key: list(hashes) for key, hashes in self.requests.items()},
            "responses": {h: response.to_dict() for h, response in self.responses.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Dump:
        requests = dict(data.get("requests") or {})
        responses = dict(data.get("responses") or {})
        return cls(
            requests={str(k): [str(h) for h in v] for k, v in requests.items()},
            responses={str(h): DumpResponse.from_dict(dict(v)) for h, v in responses.items()},
        )
