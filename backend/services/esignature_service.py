"""
PandaDoc e-signature integration.
Create a document from HTML, wait for the draft, send it for signature,
poll status, download the signed PDF.
"""
import asyncio
import os
import logging
import html
import httpx
from typing import Optional, List, Dict, Any

logger = logging.getLogger(__name__)

PANDADOC_API_BASE = "https://api.pandadoc.com/public/v1"

# HTML sources are processed asynchronously: document.uploaded -> document.draft
DRAFT_STATUS = "document.draft"
ERROR_STATUS = "document.error"


class ESignatureError(Exception):
    """E-signature provider call failed."""
    pass


def content_to_html(title: str, content: str) -> str:
    if content.lstrip().lower().startswith(("<!doctype html", "<html")):
        return content
    paragraphs = "".join(
        f"<p>{html.escape(block).replace(chr(10), '<br/>')}</p>"
        for block in content.split("\n\n") if block.strip()
    )
    return (
        f"<!DOCTYPE html><html><head><meta charset=\"utf-8\"><title>{html.escape(title)}</title></head>"
        f"<body><h1>{html.escape(title)}</h1>{paragraphs}</body></html>"
    )


class ESignatureClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = PANDADOC_API_BASE,
        timeout: float = 30.0,
        draft_poll_attempts: int = 10,
        draft_poll_interval: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else os.getenv("PANDADOC_API_KEY")
        self.base_url = base_url
        self.timeout = timeout
        self.draft_poll_attempts = draft_poll_attempts
        self.draft_poll_interval = draft_poll_interval
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"API-Key {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if not self.configured:
            raise ESignatureError("PANDADOC_API_KEY is not set")
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except httpx.TimeoutException:
            logger.error(f"PandaDoc timeout: {method} {path}")
            raise ESignatureError("E-signature provider timeout")
        except httpx.HTTPError as e:
            logger.error(f"PandaDoc request error: {method} {path}: {e}")
            raise ESignatureError(f"E-signature provider error: {e}")

        if response.status_code >= 400:
            logger.error(f"PandaDoc API error {response.status_code}: {response.text}")
            raise ESignatureError(f"E-signature provider returned {response.status_code}")
        return response

    async def create_document(
        self,
        name: str,
        content: str,
        recipients: List[Dict[str, str]],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Create a provider document; recipients are {name, email}."""
        formatted = []
        for r in recipients:
            first, _, last = (r.get("name") or "").partition(" ")
            formatted.append({
                "email": r["email"],
                "first_name": first,
                "last_name": last,
                "role": "signer",
            })
        payload = {
            "name": name,
            "recipients": formatted,
            "content_html": content_to_html(name, content),
            "metadata": metadata or {},
        }
        response = await self._request("POST", "/documents", json=payload)
        data = response.json()
        logger.info(f"PandaDoc document created: {data.get('id')}")
        return data

    async def wait_for_draft(self, provider_id: str) -> Dict[str, Any]:
        """Poll until the uploaded document is a draft; only drafts can be sent."""
        for attempt in range(self.draft_poll_attempts):
            response = await self._request("GET", f"/documents/{provider_id}")
            data = response.json()
            status = data.get("status")
            if status == DRAFT_STATUS:
                return data
            if status == ERROR_STATUS:
                raise ESignatureError(f"PandaDoc could not process document {provider_id}")
            if attempt < self.draft_poll_attempts - 1:
                await asyncio.sleep(self.draft_poll_interval)
        raise ESignatureError(f"PandaDoc document {provider_id} did not reach draft status")

    async def send_document(self, provider_id: str, subject: Optional[str] = None, message: Optional[str] = None) -> Dict[str, Any]:
        payload = {
            "subject": subject or "Document for signature",
            "message": message or "Please sign this document.",
            "silent": False,
        }
        response = await self._request("POST", f"/documents/{provider_id}/send", json=payload)
        return response.json()

    async def get_status(self, provider_id: str) -> Dict[str, Any]:
        response = await self._request("GET", f"/documents/{provider_id}/details")
        return response.json()

    async def download(self, provider_id: str) -> bytes:
        response = await self._request("GET", f"/documents/{provider_id}/download")
        return response.content
