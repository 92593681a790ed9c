"""GraphQL query validation utilities."""

from .depth_extension import DepthLimitExtension, calculate_depth, create_depth_limit_extension

__all__ = ['DepthLimitExtension', 'calculate_depth', 'create_depth_limit_extension']
