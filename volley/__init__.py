"""
volley - parallel launcher for end-to-end browser load runs.

Runs many independent copies of the same test job locally (docker) or on
AWS ECS and reduces their outcomes into a single verdict.
"""

__version__ = "0.1.0"
