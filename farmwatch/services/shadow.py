from __future__ import annotations

import json
import logging
from typing import Any

import requests

from .errors import ShadowFetchError


logger = logging.getLogger("farmwatch.shadow")

SHADOW_QUERY = """
  query($deviceid: String!) {
    shadow(deviceid: $deviceid) { deviceid data rev modified }
  }
"""

_DETAIL_MAX_CHARS = 300


def _preview(text: str) -> str:
    text = (text or "").strip()
    if len(text) > _DETAIL_MAX_CHARS:
        return text[:_DETAIL_MAX_CHARS] + "..."
    return text


class ShadowClient:
    """Reads the latest device shadow from the GraphQL device-twin service."""

    def __init__(self, *, graphql_url: str, timeout_s: float = 10.0, http: Any = requests) -> None:
        self.graphql_url = graphql_url
        self.timeout_s = timeout_s
        self._http = http

    def fetch_shadow(self, external_device_id: str, credential: str) -> dict[str, Any]:
        try:
            response = self._http.post(
                self.graphql_url,
                json={"query": SHADOW_QUERY, "variables": {"deviceid": external_device_id}},
                headers={"Content-Type": "application/json", "Authorization": credential},
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise ShadowFetchError(None, f"request failed: {type(exc).__name__}") from exc

        status = int(response.status_code)
        if not (200 <= status < 300):
            raise ShadowFetchError(status, _preview(response.text) or "non-success response")

        try:
            body = response.json()
        except ValueError:
            raise ShadowFetchError(status, f"invalid JSON body: {_preview(response.text)}") from None

        if not isinstance(body, dict):
            raise ShadowFetchError(status, "response body is not an object")

        errors = body.get("errors")
        if errors:
            raise ShadowFetchError(status, f"graphql errors: {_preview(json.dumps(errors, default=str))}")

        data = body.get("data")
        shadow = data.get("shadow") if isinstance(data, dict) else None
        if not isinstance(shadow, dict):
            raise ShadowFetchError(status, f"shadow not found for device '{external_device_id}'")

        values = shadow.get("data")
        if isinstance(values, str):
            # Some deployments return the JSON scalar as an encoded string.
            try:
                values = json.loads(values)
            except ValueError:
                raise ShadowFetchError(status, "shadow data is not valid JSON") from None

        if not isinstance(values, dict):
            raise ShadowFetchError(status, "shadow data is not an object")
        if not values:
            raise ShadowFetchError(status, f"shadow data is empty for device '{external_device_id}'")

        logger.debug(
            "shadow_fetched",
            extra={
                "fields": {
                    "external_device_id": external_device_id,
                    "keys": len(values),
                    "modified": shadow.get("modified"),
                }
            },
        )
        return values
