"""
Materializes the tarballs embedded in an ``npm publish`` payload.
"""
from __future__ import annotations

import base64
import binascii
import logging
from typing import Dict, List

from npm_adapter.domain.errors import MalformedPayload
from npm_adapter.domain.models import PublishPayload
from npm_adapter.domain.npm_utils import asset_key
from npm_adapter.storage.blob_storage import BlobStorage

logger = logging.getLogger(__name__)


class ArchiveStore:
    def __init__(self, storage: BlobStorage):
        self.storage = storage

    @staticmethod
    def decode_attachments(payload: PublishPayload) -> Dict[str, bytes]:
        """
        Decode every attachment of the payload, keyed by its storage key.

        Raises MalformedPayload on the first attachment that is not valid base64,
        before anything has been written.
        """
        decoded: Dict[str, bytes] = {}
        for filename, attachment in payload.attachments.items():
            try:
                data = base64.b64decode(attachment.data, validate=True)
            except (binascii.Error, ValueError) as e:
                raise MalformedPayload(f"Attachment {filename} is not valid base64: {e}") from e
            if attachment.length is not None and attachment.length != len(data):
                raise MalformedPayload(
                    f"Attachment {filename} declares {attachment.length} bytes but decodes to {len(data)}"
                )
            decoded[asset_key(payload.name, filename)] = data
        return decoded

    async def extract_and_store(self, payload: PublishPayload) -> List[str]:
        """
        Decode all attachments and persist them under ``<name>/-/<filename>``.

        Returns the list of keys written.
        """
        decoded = self.decode_attachments(payload)
        for key, data in decoded.items():
            await self.storage.put(key, data)
            logger.info(f"Stored attachment {key} ({len(data)} bytes)")
        return list(decoded)
