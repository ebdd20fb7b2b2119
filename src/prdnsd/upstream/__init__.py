"""Upstream selection and forwarding."""

from .router import ForwardResult, UpstreamRoute, UpstreamRouter, parse_upstream_spec

__all__ = ["ForwardResult", "UpstreamRoute", "UpstreamRouter", "parse_upstream_spec"]
