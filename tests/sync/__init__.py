"""
Tests for the bookmark synchronization layer.

Covers the collection store, change event decoding, the ordered event
queue, the change feed client, the mutation gateway, the sync engine and
the auth gate.
"""
