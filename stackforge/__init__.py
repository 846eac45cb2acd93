"""Stackforge -- serverless deployment orchestration for CloudFormation.

Compiles a declarative service description into a CloudFormation
template, packages function code, uploads both to the deployment bucket,
creates or updates the stack and waits for it to settle.
"""

__version__ = "0.1.0"

from stackforge.core.orchestrator import Orchestrator
from stackforge.models.service import ServiceSpec
from stackforge.service_loader import load_service

__all__ = ["Orchestrator", "ServiceSpec", "__version__", "load_service"]
