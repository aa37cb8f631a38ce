"""HTTP definition sink (httpx).

Delivers group definitions to an access-control consumer as one JSON
document per push:

    {
      "case_sensitive": false,
      "groups": [
        {
          "group": {"kind": "group", "name": "Domain Users@CORP", "namespace": "Default"},
          "members": [{"kind": "user", "name": "jdoe@CORP", "namespace": "Default"}]
        }
      ]
    }
"""

from typing import Any, Dict, Optional

import httpx

from adgroupsync.core.exceptions import SinkError
from adgroupsync.core.logging import ContextualLogger
from adgroupsync.core.logging import logger as default_logger
from adgroupsync.platform.access_control.schemas import GroupDefinitions


class HttpDefinitionSink:
    """DefinitionSink that POSTs definitions to a URL.

    Args:
        url: Endpoint receiving the definitions.
        timeout_secs: Request timeout.
        client: Optional pre-configured httpx.AsyncClient (e.g. for tests).
        logger: Contextual logger; defaults to the package logger.
    """

    def __init__(
        self,
        url: str,
        timeout_secs: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
        logger: Optional[ContextualLogger] = None,
    ):
        """Initialize the sink."""
        self.url = url
        self.timeout_secs = timeout_secs
        self._client = client
        self.logger = logger or default_logger

    @staticmethod
    def build_payload(definitions: GroupDefinitions, case_sensitive: bool) -> Dict[str, Any]:
        """Serialize definitions into the JSON document sent to the consumer."""
        return {
            "case_sensitive": case_sensitive,
            "groups": [
                {
                    "group": group.model_dump(mode="json"),
                    "members": [member.model_dump(mode="json") for member in members],
                }
                for group, members in definitions.items()
            ],
        }

    async def push_group_definitions(
        self, definitions: GroupDefinitions, case_sensitive: bool
    ) -> None:
        """POST all definitions in one request.

        Raises:
            SinkError: On transport errors or a non-2xx response.
        """
        payload = self.build_payload(definitions, case_sensitive)
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_secs) as client:
                    response = await client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SinkError(
                f"Push rejected by {self.url}: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise SinkError(f"Push to {self.url} failed: {e}") from e

        self.logger.info(f"Pushed {len(definitions)} group definitions to {self.url}")
