"""
Chain boundary for Storage Guard.

Typed contracts and collaborator protocols for the payment, registry and
storage provider SDK, plus the balance fetcher built on them.
"""
