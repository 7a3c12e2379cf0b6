"""Association encoding and current-state graph reconstruction."""

from .associations import (
    AssociationEncoder,
    AssociationSet,
    AssociationType,
    LINK_MODE,
    UPDATE_MODE,
    classify,
    resolved_sha,
    sha_path,
)
from .deconvolute import DocumentGraph, GraphDeconvoluter

__all__ = [
    "AssociationEncoder",
    "AssociationSet",
    "AssociationType",
    "DocumentGraph",
    "GraphDeconvoluter",
    "LINK_MODE",
    "UPDATE_MODE",
    "classify",
    "resolved_sha",
    "sha_path",
]
