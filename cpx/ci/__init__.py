"""Containerized CI builds driven by the per-project ``cpx.ci`` manifest."""

from cpx.ci.executor import ContainerizedBuildExecutor, DockerExecutor
from cpx.ci.pipeline import CIPipeline

__all__ = ["CIPipeline", "ContainerizedBuildExecutor", "DockerExecutor"]
