"""
Paylink API - one-shot payment links backed by a shielded relay.

Provides:
- Link creation and deposit recording
- Signature-authorised, exactly-once claims paid out through the relay
- Operator balance guarding and stale-claim reconciliation
"""

__version__ = "0.1.0"
