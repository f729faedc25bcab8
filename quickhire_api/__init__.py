"""QuickHireCrew Payments API.

FastAPI-based backend for the contractor dashboard, providing:
- Payment session state (customer ensure, error recovery, portal redirects)
- Read-only mirrors of the Stripe extension's Firestore collections
- Pricing plans and checkout session creation
- Translation tables for the marketing site

Security: Firebase Auth tokens required for all payment and billing endpoints.
"""
