"""Service orchestration layer: coordinates multi-service workflows.

Modules:
- intake_pipeline: Orchestrates one document from bytes to extracted fields and a resolved vendor.
"""
