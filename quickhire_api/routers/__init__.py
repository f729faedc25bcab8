"""API routers."""

from . import billing, health, i18n, payments

__all__ = ['billing', 'health', 'i18n', 'payments']
