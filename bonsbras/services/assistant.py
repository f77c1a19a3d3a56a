"""
Renovation assistant.
Proxies renovation advice (text or photo analysis) and AI image transforms to
the OpenAI API. Failures of the upstream provider surface as UpstreamError
(502); an unreadable input image is the caller's fault (400).
"""
import base64
import binascii
import io
from typing import Optional

import structlog
from openai import OpenAI, OpenAIError
from PIL import Image, ImageOps, UnidentifiedImageError
from pillow_heif import register_heif_opener

from ..config import settings
from ..errors import UpstreamError, ValidationFailed

logger = structlog.get_logger(__name__)

# HEIC/HEIF support
register_heif_opener()

ADVICE_SYSTEM_PROMPT = """Tu es un expert en rénovation et design d'intérieur. Tu donnes des conseils pratiques, personnalisés et créatifs pour améliorer les espaces.

Ton style de réponse :
- Enthousiaste et encourageant
- Concret avec des suggestions précises
- Structure tes réponses clairement
- Mentionne les couleurs, matériaux et styles possibles
- Donne des estimations de budget si pertinent
- Sois concis (max 300 mots)

Si on te demande de modifier une image, explique que l'utilisateur doit d'abord envoyer une photo."""

ANALYSIS_SYSTEM_PROMPT = """Tu es un expert en rénovation et design d'intérieur avec 15 ans d'expérience. Tu analyses des photos de pièces et donnes des conseils détaillés.

Ton analyse doit inclure :
1. État actuel : style, couleurs, mobilier, luminosité
2. Points forts
3. Améliorations suggérées : peinture, mobilier et agencement, éclairage, décoration, optimisation de l'espace
4. Estimation budget : fourchette approximative des travaux suggérés

Style : professionnel mais accessible, structuré, maximum 400 mots.
À la fin, propose de transformer l'image avec l'IA pour visualiser les changements."""

DEFAULT_ANALYSIS_MESSAGE = "Analysez cette pièce et donnez-moi vos meilleurs conseils de rénovation."
DEFAULT_EDIT_PROMPT = (
    "Modern Scandinavian interior design with bright colors, natural light, "
    "minimalist furniture, and cozy atmosphere."
)


def decode_data_url(data_url: str) -> bytes:
    """Bytes of a ``data:<mime>;base64,<payload>`` URL (a bare base64 payload is accepted too)."""
    if not data_url:
        raise ValidationFailed("Image URL manquante")
    payload = data_url.split(",", 1)[1] if "," in data_url else data_url
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationFailed("Image is not valid base64 data")


def prepare_edit_image(image_bytes: bytes, size: int) -> bytes:
    """Cover-resize to a ``size`` x ``size`` RGBA PNG."""
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError):
        raise ValidationFailed("Image could not be decoded")
    img = ImageOps.fit(img.convert("RGBA"), (size, size), method=Image.LANCZOS)
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def build_edit_mask(size: int) -> bytes:
    """Fully transparent mask: the whole image is editable."""
    mask = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    out = io.BytesIO()
    mask.save(out, format="PNG")
    return out.getvalue()


class RenovationAssistant:
    def __init__(self, client: Optional[OpenAI] = None):
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not settings.openai_api_key:
                raise UpstreamError("AI provider is not configured", "OPENAI_API_KEY is not set")
            self._client = OpenAI(api_key=settings.openai_api_key, timeout=settings.openai_timeout_s)
        return self._client

    def advise(self, message: str, image: Optional[bytes] = None, content_type: Optional[str] = None) -> str:
        if image is None:
            if not (message or "").strip():
                raise ValidationFailed("message is required")
            messages = [
                {"role": "system", "content": ADVICE_SYSTEM_PROMPT},
                {"role": "user", "content": message},
            ]
            model, temperature, max_tokens = settings.advice_text_model, 0.8, 500
        else:
            image_url = f"data:{content_type or 'image/jpeg'};base64,{base64.b64encode(image).decode()}"
            messages = [
                {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": message or DEFAULT_ANALYSIS_MESSAGE},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                },
            ]
            model, temperature, max_tokens = settings.advice_vision_model, 0.7, 800

        try:
            completion = self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as e:
            logger.warning("assistant_upstream_failed", operation="advice", model=model, error=str(e))
            raise UpstreamError("Erreur lors de l'analyse", str(e))

        try:
            content = completion.choices[0].message.content
        except (AttributeError, IndexError):
            content = None
        if not content:
            logger.warning("assistant_upstream_failed", operation="advice", model=model, error="empty completion")
            raise UpstreamError("Erreur lors de l'analyse", "Empty response from AI provider")
        logger.info("assistant_advice", model=model, with_image=image is not None, chars=len(content))
        return content

    def edit_image(self, image_url: str, instructions: Optional[str] = None) -> dict:
        size = settings.image_edit_size
        image_png = prepare_edit_image(decode_data_url(image_url), size)
        mask_png = build_edit_mask(size)
        prompt = (instructions or "").strip() or DEFAULT_EDIT_PROMPT

        try:
            response = self.client.images.edit(
                model=settings.image_edit_model,
                image=("image.png", image_png, "image/png"),
                mask=("mask.png", mask_png, "image/png"),
                prompt=prompt,
                n=1,
                size=f"{size}x{size}",
            )
        except OpenAIError as e:
            logger.warning("assistant_upstream_failed", operation="image_edit", error=str(e))
            raise UpstreamError("Erreur lors de la modification", str(e))

        data = getattr(response, "data", None) or []
        edited_url = getattr(data[0], "url", None) if data else None
        if not edited_url:
            logger.warning("assistant_upstream_failed", operation="image_edit", error="missing url")
            raise UpstreamError("Réponse invalide de l'API OpenAI", "No image URL in response")
        logger.info("assistant_image_edited", prompt_chars=len(prompt))
        return {"editedImageUrl": edited_url, "prompt": prompt}


def get_assistant() -> RenovationAssistant:
    return RenovationAssistant()
