import httpx
import logging
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
from vetclinic.core.exceptions import ExternalServiceException, ExternalServiceServerError
from vetclinic.services.notification import NotificationEvent

logger = logging.getLogger(__name__)


class WebhookNotificationSink:
    """Posts each event as JSON to the practice's notification relay (the
    service that pushes to the admin console and the label printer)."""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, ExternalServiceServerError)),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        stop=stop_after_attempt(3),
        reraise=True
    )
    async def send(self, event: NotificationEvent) -> None:
        body = event.model_dump(mode="json")
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=body)
        if response.status_code >= 500:
            logger.warning(f"notification relay returned {response.status_code} for {event.type.value}")
            raise ExternalServiceServerError(f"notification relay error {response.status_code}")
        if response.status_code >= 400:
            raise ExternalServiceException(f"notification relay rejected {event.type.value}: {response.text}", status_code=response.status_code)
        logger.debug(f"delivered {event.type.value} to {self.url}")
