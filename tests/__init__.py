"""
Tests package - Test suite for the GMSA admission webhook.

Contains:
- unit/: Unit tests for individual components
- fixtures/: Test data, fake cred spec store and certificate helpers
"""
