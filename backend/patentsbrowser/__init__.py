"""
PatentsBrowser - Patent Research Workspace
==========================================

Backend for the patent-research product:
- Email/password accounts with OTP verification and single-session tokens
- Subscription billing (trial, UPI reference payments, signed orders, stacked plans)
- Organizations with invite links and role-gated billing
- Saved-patent folders, workfiles and bulk import from uploaded files
"""

__version__ = "1.0.0"
__product__ = "PatentsBrowser"
