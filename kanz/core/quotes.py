"""HTTP clients for the Li.Fi bridge and Jupiter swap aggregators."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import requests

from kanz.config import KanzConfig
from kanz.core.errors import NotConfigured, UpstreamFailure
from kanz.core.utils import get_logger, truncate

LOGGER = get_logger("kanz.quotes")


def request_json(
    session: requests.Session,
    method: str,
    url: str,
    *,
    code: str,
    message: str,
    timeout: int,
    detail_limit: int,
    **kwargs: Any,
) -> Dict[str, Any]:
    """Perform one upstream call and return its JSON body.

    Transport errors, non-2xx responses and non-JSON bodies all raise
    ``UpstreamFailure`` with ``code``; nothing is retried.
    """
    try:
        response = session.request(method, url, timeout=timeout, **kwargs)
    except requests.RequestException as exc:
        LOGGER.warning("%s: %s %s unreachable: %s", code, method, url, exc)
        raise UpstreamFailure(message, code=code, detail=truncate(str(exc), detail_limit)) from exc

    if not response.ok:
        LOGGER.warning("%s: %s %s returned HTTP %s", code, method, url, response.status_code)
        raise UpstreamFailure(message, code=code, detail=truncate(response.text, detail_limit))

    try:
        payload = response.json()
    except ValueError as exc:
        raise UpstreamFailure(message, code=code, detail=truncate(response.text, detail_limit)) from exc
    if not isinstance(payload, dict):
        raise UpstreamFailure(message, code=code, detail=truncate(response.text, detail_limit))
    return payload


class LiFiClient:
    """Two-phase Li.Fi protocol: quote, then materialize a transaction if needed."""

    def __init__(self, config: KanzConfig, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self.session = session or requests.Session()

    def _call(self, method: str, url: str, *, code: str, message: str, **kwargs: Any) -> Dict[str, Any]:
        return request_json(
            self.session,
            method,
            url,
            code=code,
            message=message,
            timeout=self.config.defaults.api_timeout,
            detail_limit=self.config.defaults.detail_max_chars,
            **kwargs,
        )

    def quote(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """Fetch a priced route (a Li.Fi "step")."""
        return self._call(
            "GET",
            self.config.api_urls.lifi_quote,
            code="lifi_quote_failed",
            message="LiFi quote failed",
            params=dict(params),
        )

    def step_transaction(self, step: Mapping[str, Any]) -> Dict[str, Any]:
        """Materialize ``transactionRequest`` for a step that lacks one."""
        return self._call(
            "POST",
            self.config.api_urls.lifi_step_transaction,
            code="lifi_step_transaction_failed",
            message="LiFi stepTransaction failed",
            json=dict(step),
        )


class JupiterClient:
    """Quote and swap-build calls against the Jupiter swap API."""

    def __init__(self, config: KanzConfig, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self.session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self.config.secrets.jupiter_api_key)

    def _headers(self) -> Dict[str, str]:
        if not self.is_configured:
            raise NotConfigured("Jupiter API key not configured")
        return {"x-api-key": str(self.config.secrets.jupiter_api_key)}

    def _call(self, method: str, url: str, *, code: str, message: str, **kwargs: Any) -> Dict[str, Any]:
        return request_json(
            self.session,
            method,
            url,
            code=code,
            message=message,
            timeout=self.config.defaults.api_timeout,
            detail_limit=self.config.defaults.detail_max_chars,
            headers=self._headers(),
            **kwargs,
        )

    def quote(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        return self._call(
            "GET",
            self.config.api_urls.jupiter_quote,
            code="jupiter_quote_failed",
            message="Jupiter quote failed",
            params=dict(params),
        )

    def build_swap(self, body: Mapping[str, Any]) -> Dict[str, Any]:
        return self._call(
            "POST",
            self.config.api_urls.jupiter_swap,
            code="jupiter_swap_build_failed",
            message="Jupiter swap build failed",
            json=dict(body),
        )


__all__ = ["JupiterClient", "LiFiClient", "request_json"]
