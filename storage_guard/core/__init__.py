"""
Core modules for Storage Guard.

This package contains allowance math, storage metrics, destination
selection, the preflight gate and the upload orchestrator.
"""
