"""
Delivery Kernel

The milestone lifecycle and change-control core of a contract delivery
tracker:
- Deliverable workflow with dual delivery sign-off
- Milestone status and progress derived from deliverables
- Dual-signature baseline commitment and acceptance certificates
- Variations that amend locked baselines with append-only history
- Full auditability via hash chain
"""

__version__ = "0.1.0"
