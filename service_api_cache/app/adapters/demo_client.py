"""
Reference API client for the demo upstream.
"""

from typing import Any, Dict, Mapping, Optional

from ..caching.models import ApiResponse
from .api_client import BaseApiClient


class DemoApiClient(BaseApiClient):
    """Client for the demo API used in local development and examples."""

    def get_client_specific_fields(self) -> Dict[str, str]:
        return {
            "response_format": "string",
            "input_value": "string",
            "input_type": "string",
        }

    async def predictions(
        self,
        query: str,
        max_results: int = 10,
        additional_params: Optional[Mapping[str, Any]] = None,
        amount: int = 1,
    ) -> ApiResponse:
        """Fetch predictions for ``query``."""
        self.logger.debug("Making predictions request", client=self.client_name, query=query, max_results=max_results)
        params = {**(additional_params or {}), "query": query, "max_results": max_results}
        return await self.send_cached_request("predictions", params, "GET", amount)

    async def reports(
        self,
        report_type: str,
        data_source: str,
        additional_params: Optional[Mapping[str, Any]] = None,
        amount: int = 1,
    ) -> ApiResponse:
        """Generate a report of ``report_type`` from ``data_source``."""
        self.logger.debug(
            "Making reports request",
            client=self.client_name,
            report_type=report_type,
            data_source=data_source
        )
        params = {**(additional_params or {}), "report_type": report_type, "data_source": data_source}
        return await self.send_cached_request("reports", params, "POST", amount)
