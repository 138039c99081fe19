"""
Data models for the GMSA webhook.

Pydantic models for admission review envelopes, pods and admission decisions.
"""
