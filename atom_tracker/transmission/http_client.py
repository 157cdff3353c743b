"""
HTTP client for sending events to the Atom endpoint.

Implements the transport contract used by the tracker:
put_events(stream, records, method) -> Response(error, data, status).
Failures are returned, never raised. Requests with no HTTP status
(connection errors, timeouts, open circuit) are reported as 503 so the
tracker treats them as transient.
"""
import base64
import hashlib
import hmac
import json
from typing import Any, NamedTuple, Optional
import requests
from pybreaker import CircuitBreaker, CircuitBreakerError
import structlog

from ..config import Config
from .circuit_breaker import create_circuit_breaker

logger = structlog.get_logger()

API_VERSION = "1.1.0"
SDK_TYPE = "atom-python"
SDK_VERSION = "1.0.0"

UNAVAILABLE_STATUS = 503
BAD_REQUEST_STATUS = 400


class Response(NamedTuple):
    """Outcome of one request: error is None on success."""

    error: Any
    data: Any
    status: Optional[int]


class _ServerError(Exception):
    """Raised inside the breaker so 5xx responses count as failures."""

    def __init__(self, response: requests.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


class AtomClient:
    """
    Atom REST client.

    Safe to share between threads: each call builds its own request and the
    underlying session is only used for connection pooling.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        session: Optional[requests.Session] = None,
        breaker: Optional[CircuitBreaker] = None
    ):
        self.config = config or Config()
        self.session = session or requests.Session()
        self.breaker = breaker or create_circuit_breaker(
            fail_max=self.config.circuit_breaker_fail_max,
            timeout_duration=self.config.circuit_breaker_timeout_s
        )

    def put_event(self, stream: str, data: Any, method: str = "POST") -> Response:
        """
        Send a single event to a stream.

        Args:
            stream: Atom stream name
            data: Event payload (text or JSON-serializable value)
            method: POST or GET

        Returns:
            Response tuple
        """
        if not stream:
            return Response("Stream is required", None, BAD_REQUEST_STATUS)
        if not data:
            return Response("Data is required", None, BAD_REQUEST_STATUS)

        return self._request(self.config.endpoint, stream, data, method)

    def put_events(self, stream: str, records: list[str], method: str = "POST") -> Response:
        """
        Send a batch of serialized records to a stream.

        Args:
            stream: Atom stream name
            records: Non-empty list of serialized records, order preserved
            method: POST or GET

        Returns:
            Response tuple; per-record results in data follow records order
        """
        if not stream:
            return Response("Stream is required", None, BAD_REQUEST_STATUS)
        if not isinstance(records, (list, tuple)) or not records:
            return Response(
                "Data (must be not empty list) is required", None, BAD_REQUEST_STATUS
            )

        return self._request(self.config.endpoint + 'bulk', stream, list(records), method)

    def health(self) -> Response:
        """Send a GET health check to the endpoint."""
        return self._request(self.config.endpoint, 'health_check', 'null', 'GET')

    def sign(self, data_text: str) -> str:
        """Hex HMAC-SHA256 of the data text, or "" without an auth key."""
        if not self.config.auth:
            return ""
        return hmac.new(
            self.config.auth.encode('utf-8'),
            data_text.encode('utf-8'),
            hashlib.sha256
        ).hexdigest()

    def _request(self, url: str, stream: str, data: Any, method: str) -> Response:
        data_text = json.dumps(data)
        body = {
            'table': stream,
            'data': data_text,
            'apiVersion': API_VERSION,
            'auth': self.sign(data_text),
        }

        try:
            response = self.breaker.call(self._send, url, body, method.upper())

        except CircuitBreakerError:
            logger.warning("circuit_open_request_skipped", stream=stream)
            return Response("Circuit open - Atom endpoint unavailable", None, UNAVAILABLE_STATUS)

        except _ServerError as e:
            response = e.response

        except requests.RequestException as e:
            logger.warning("atom_request_failed", stream=stream, error=str(e))
            return Response(f"Connection error: {e}", None, UNAVAILABLE_STATUS)

        return self._to_response(response, stream)

    def _send(self, url: str, body: dict[str, Any], method: str) -> requests.Response:
        headers = {
            'Content-Type': 'application/json;charset=UTF-8',
            'x-ironsource-atom-sdk-type': SDK_TYPE,
            'x-ironsource-atom-sdk-version': SDK_VERSION,
        }

        if method == 'GET':
            encoded = base64.b64encode(json.dumps(body).encode('utf-8')).decode('ascii')
            response = self.session.get(
                url,
                params={'data': encoded},
                headers=headers,
                timeout=self.config.request_timeout_s
            )
        else:
            response = self.session.post(
                url,
                data=json.dumps(body),
                headers=headers,
                timeout=self.config.request_timeout_s
            )

        if response.status_code >= 500:
            raise _ServerError(response)
        return response

    def _to_response(self, response: requests.Response, stream: str) -> Response:
        status = response.status_code

        if 200 <= status < 400:
            try:
                data = response.json()
            except ValueError:
                data = response.text
            logger.debug("atom_request_sent", stream=stream, status=status)
            return Response(None, data, status)

        logger.warning("atom_request_rejected", stream=stream, status=status)
        return Response(response.text or response.reason, None, status)
