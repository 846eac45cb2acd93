"""Deployment pipeline core: naming, provider access, packaging, upload, reconciliation."""
