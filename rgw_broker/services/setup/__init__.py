"""Setup (provisioning) services.

This package contains startup helpers that *provision* or *verify* the backend
state the broker relies on, and warm the instance cache from stored records.
"""
