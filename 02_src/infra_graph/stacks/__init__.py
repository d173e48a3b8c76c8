"""Built-in stack declarations."""

from .eks import EksStackSettings, attach_role_policies, declare_eks_stack

STACKS = {"eks": declare_eks_stack}

__all__ = ["EksStackSettings", "attach_role_policies", "declare_eks_stack", "STACKS"]
