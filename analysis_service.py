"""
Gemini client for reading glass cutting orders.
Sends the order photo to the Gemini generateContent API and returns the markdown plan.
"""

import base64
import logging
from typing import Any, Dict, Optional

import aiohttp

import app_config
from session_state import UploadedImage

logger = logging.getLogger(__name__)

FALLBACK_PROMPT = (
    "Bạn là trợ lý cắt kính. Hãy đọc hình ảnh đơn hàng, trích xuất danh sách các tấm kính "
    "(kích thước, số lượng, ghi chú) và lập kế hoạch cắt tối ưu. Trả lời bằng tiếng Việt, "
    "định dạng markdown với các mục '### 1. ', '### 2. ', '### 3. ' và bảng."
)


class AnalysisError(Exception):
    """The AI service could not produce an analysis."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


def load_prompt(path: Optional[str] = None) -> str:
    """Load the analysis prompt, falling back to a built-in one."""
    template_file_path = path or app_config.PROMPT_TEMPLATE_PATH
    try:
        with open(template_file_path, "r", encoding="utf-8") as f:
            prompt = f.read().strip()
        if prompt:
            return prompt
        logger.warning(f"Prompt template is empty: {template_file_path}")
    except OSError as e:
        logger.error(f"Failed to load prompt template from file: {e}")
    logger.warning("Using fallback prompt")
    return FALLBACK_PROMPT


def build_payload(image: UploadedImage, prompt: str) -> Dict[str, Any]:
    return {
        "contents": [
            {
                "role": "user",
                "parts": [
                    {
                        "inline_data": {
                            "mime_type": image.content_type,
                            "data": base64.b64encode(image.data).decode("utf-8"),
                        }
                    },
                    {"text": prompt},
                ],
            }
        ]
    }


def extract_text(result: Dict[str, Any]) -> str:
    """
    Pull the generated text out of a generateContent response.

    Raises:
        AnalysisError: the prompt was blocked or no text came back
    """
    block_reason = (result.get("promptFeedback") or {}).get("blockReason")
    if block_reason:
        raise AnalysisError(f"Yêu cầu bị từ chối bởi dịch vụ AI ({block_reason})")

    candidates = result.get("candidates") or []
    if not candidates:
        raise AnalysisError("Dịch vụ AI không trả về kết quả")

    parts = (candidates[0].get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts)
    if not text.strip():
        finish_reason = candidates[0].get("finishReason", "UNKNOWN")
        raise AnalysisError(f"Dịch vụ AI trả về kết quả rỗng ({finish_reason})")
    return text


def _error_message(status: int, body: str, data: Optional[Dict[str, Any]]) -> str:
    if data and isinstance(data.get("error"), dict) and data["error"].get("message"):
        return data["error"]["message"]
    return f"Gemini API error: {status} - {body[:200]}"


async def analyze_order_image(
    image: UploadedImage,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> str:
    """
    Analyze an order photo with Gemini.

    Args:
        image: Uploaded order image
        api_key: Gemini API key, defaults to GEMINI_API_KEY
        model: Gemini model name, defaults to GEMINI_MODEL
        session: Existing aiohttp session to reuse; a new one is opened otherwise

    Returns:
        Markdown text with the extracted items and the cutting plan

    Raises:
        AnalysisError: on any failure of the request
    """
    api_key = api_key or app_config.GEMINI_API_KEY
    model = model or app_config.GEMINI_MODEL
    if not api_key:
        raise AnalysisError("Chưa cấu hình khóa API Gemini (GEMINI_API_KEY)")

    logger.info("=" * 60)
    logger.info("GEMINI ANALYSIS - Starting order image analysis")
    logger.info(f"Image: {image.filename} ({image.content_type}, {image.size} bytes)")
    logger.info(f"Model: {model}")

    url = f"{app_config.GEMINI_API_URL}/models/{model}:generateContent"
    headers = {
        "Content-Type": "application/json",
        "x-goog-api-key": api_key,
    }
    payload = build_payload(image, load_prompt())

    owns_session = session is None
    if owns_session:
        session = aiohttp.ClientSession()
    try:
        async with session.post(url, headers=headers, json=payload) as response:
            logger.debug(f"Gemini response status: {response.status}")
            if response.status != 200:
                text = await response.text()
                try:
                    data = await response.json(content_type=None)
                except ValueError:
                    data = None
                logger.error(f"Gemini API error: {response.status}")
                logger.error(f"Response text: {text[:500]}")
                raise AnalysisError(_error_message(response.status, text, data), status=response.status)
            result = await response.json(content_type=None)
    except aiohttp.ClientError as e:
        logger.error(f"Gemini request failed: {e}")
        raise AnalysisError(f"Không thể kết nối tới dịch vụ AI: {e}") from e
    finally:
        if owns_session:
            await session.close()

    text = extract_text(result)
    logger.info(f"✓ Analysis received: {len(text)} chars")
    logger.info("=" * 60)
    return text
