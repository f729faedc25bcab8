"""Translation tables for the marketing site and dashboard."""

from .service import TranslationService, get_translation_service

__all__ = ['TranslationService', 'get_translation_service']
