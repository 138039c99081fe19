"""
GMSA Admission Webhook - Kubernetes admission control for GMSA credential specs.

This webhook provides consistent, authorized assignment of GMSA credential
specs to Windows pods with:
- Validation of credential spec names, contents and usage authorization
- Mutation that inlines credential spec contents into pod specs
- Immutability of GMSA settings on pod updates
- TLS certificate hot-reload without restarting the server
"""

__version__ = "0.1.0"
