"""Upload classification via the generation service.

Images are sent inline (downscaled data URI). PDFs are uploaded, classified
by file reference, and deleted again. Other types are not classified.
"""

from __future__ import annotations

import json
import logging

from starlette.concurrency import run_in_threadpool

import config
from services.categories import (
    DietSubcategory,
    HealthSubcategory,
    IntegrationsSubcategory,
    TopLevelCategory,
    category_descriptions,
    is_valid,
)
from services.images import to_data_uri
from services.invoker import TemporaryUploads
from services.llm import GenerationClient, GenerationError

logger = logging.getLogger(__name__)

UNCLASSIFIED = {"category": None, "subcategory": None}


class ClassificationError(Exception):
    pass


def _values(enum_cls) -> str:
    return ", ".join(e.value for e in enum_cls)


def classification_prompt(subject: str = "image") -> str:
    return f"""Classify the {subject} using ONLY the following categories and subcategories:

{category_descriptions()}
Respond ONLY with a valid JSON object containing the 'category' and 'subcategory' keys. Use the exact string values provided in the list.
- For category '{TopLevelCategory.DIET.value}', choose one subcategory from [{_values(DietSubcategory)}].
- For category '{TopLevelCategory.HEALTH.value}', choose one subcategory from [{_values(HealthSubcategory)}].
- For category '{TopLevelCategory.INTEGRATIONS.value}', choose one subcategory from [{_values(IntegrationsSubcategory)}].
- For category '{TopLevelCategory.SELFIES.value}', the subcategory MUST be null.

Example valid JSON response: {{"category": "diet", "subcategory": "receipts"}}
Example valid JSON response: {{"category": "selfies", "subcategory": null}}"""


def parse_classification(raw: str | None) -> dict:
    if not raw:
        raise ClassificationError("Classifier returned no content")
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ClassificationError("Failed to parse classification JSON") from e
    if not isinstance(data, dict):
        raise ClassificationError("Classification is not a JSON object")
    category = data.get("category")
    subcategory = data.get("subcategory")
    if not isinstance(category, str) or not isinstance(subcategory, (str, type(None))):
        logger.warning("Classification fields are not strings: %s", data)
        raise ClassificationError("Received invalid or incomplete classification structure")
    if not is_valid(category, subcategory):
        logger.warning("Invalid classification received: %s", data)
        raise ClassificationError("Received invalid or incomplete classification structure")
    return {"category": category, "subcategory": subcategory}


async def _classify(client: GenerationClient, content: list[dict]) -> dict:
    raw = await run_in_threadpool(
        client.chat,
        [{"role": "user", "content": content}],
        model=config.CLASSIFY_MODEL,
        json_mode=True,
        max_tokens=150,
        temperature=0.1,
    )
    return parse_classification(raw)


async def classify_image(client: GenerationClient, image: str) -> dict:
    """Classify an image given as a data URI (or bare base64)."""
    if not image:
        raise ClassificationError("Missing image data for classification")
    if not image.startswith("data:"):
        image = f"data:image/jpeg;base64,{image}"
    return await _classify(client, [
        {"type": "text", "text": classification_prompt("image")},
        {"type": "image_url", "image_url": {"url": image, "detail": "low"}},
    ])


async def classify_pdf(client: GenerationClient, data: bytes, file_name: str) -> dict:
    async with TemporaryUploads(client) as uploads:
        try:
            file_id = await run_in_threadpool(
                client.upload_file, file_name, data, mime_type="application/pdf", purpose="user_data"
            )
        except GenerationError as e:
            logger.warning("Failed to upload PDF %s for classification: %s", file_name, e)
            return dict(UNCLASSIFIED)
        uploads.add(file_id, file_name)
        return await _classify(client, [
            {"type": "text", "text": classification_prompt(f"document '{file_name}'")},
            {"type": "file", "file": {"file_id": file_id}},
        ])


async def classify_upload(client: GenerationClient, data: bytes, mime_type: str | None,
                          file_name: str) -> dict:
    mime = (mime_type or "").lower()
    if mime.startswith("image/"):
        logger.info("Classifying image %s", file_name)
        data_uri = await run_in_threadpool(to_data_uri, data)
        return await classify_image(client, data_uri)
    if mime == "application/pdf":
        logger.info("Classifying PDF %s", file_name)
        return await classify_pdf(client, data, file_name)
    logger.info("Unsupported file type for classification: %s", mime_type)
    return dict(UNCLASSIFIED)
