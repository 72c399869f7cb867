"""
Core modules for issue-resolver.

This package contains the domain model, usage accounting, error taxonomy,
prompt construction, response recovery, retry policy and the fix
orchestrator.
"""
