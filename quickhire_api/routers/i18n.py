"""Translations router - public, no auth.

Endpoints:
    GET /api/i18n/languages
    GET /api/i18n/{language}         full table (default-language gaps filled)
    GET /api/i18n/{language}/{key}   single lookup, falls back to the key
"""

from fastapi import APIRouter, Depends, Path, Request

from ..i18n import TranslationService, get_translation_service
from ..middleware.rate_limit import rate_limit_read
from ..models import LanguagesResponse, TranslationResponse, TranslationTableResponse

router = APIRouter()


@router.get("/i18n/languages", response_model=LanguagesResponse)
async def list_languages(
    service: TranslationService = Depends(get_translation_service),
) -> LanguagesResponse:
    return LanguagesResponse(languages=service.languages, default=service.default_language)


@router.get("/i18n/{language}", response_model=TranslationTableResponse)
@rate_limit_read
async def get_translation_table(
    request: Request,
    language: str = Path(..., max_length=32),
    service: TranslationService = Depends(get_translation_service),
) -> TranslationTableResponse:
    resolved = service.resolve_language(language)
    return TranslationTableResponse(language=resolved, translations=service.table(resolved))


@router.get("/i18n/{language}/{key}", response_model=TranslationResponse)
async def translate(
    language: str = Path(..., max_length=32),
    key: str = Path(..., max_length=128),
    service: TranslationService = Depends(get_translation_service),
) -> TranslationResponse:
    resolved = service.resolve_language(language)
    return TranslationResponse(language=resolved, key=key, value=service.t(key, resolved))
