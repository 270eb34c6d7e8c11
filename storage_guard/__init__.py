"""
Storage Guard.

Client-side allowance accounting and upload orchestration for pay-for-capacity
decentralized storage.
"""

__version__ = "0.1.0"
