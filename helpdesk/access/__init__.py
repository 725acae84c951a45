"""
Access Module
=============

Bounded context for authorization.

Responsibilities:
- Model the campus → college → department hierarchy as an explicit tree
- Hold immutable role → capability reference data
- Decide allow/deny for (roles, capability, target scope, actor scope)

This core never authenticates; principals arrive with roles and scope
already resolved.
"""
