"""VCare access layer - authentication, authorization and digital-share economics.

Core concepts:
- An *identity* is resolved per request from a server-side session or a bearer token.
- Role gates decide access from the identity's role names.
- Digital shares are derived from invested amounts (100 shares per 1,000,000),
  weighted by role multipliers, with VIP / referral bonuses and maxout caps.

See DESIGN.md for the layout.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
