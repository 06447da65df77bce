"""Sale parameter loading."""

from tokensale.policy.resolver import ParamsResolver

__all__ = ["ParamsResolver"]
