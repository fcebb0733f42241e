# =============================================================================
# prestatario/__init__.py
# Prestatario - Offline-First Loan Tracker
# =============================================================================
"""
Prestatario core package.

Loans, contacts, payments and the user's profile live in Supabase. This
package keeps a per-device copy of them so the app keeps working when the
network goes away, and queues writes made while offline until it returns.
"""

__version__ = "0.1.0"
